"""
DuckDB storage backend for questions, answers, and embeddings.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

import duckdb

from ..content import extract_plain_text
from ..models import (
    ApprovalStatus,
    AuthorSummary,
    CategorySummary,
    QuestionStatus,
    QuestionView,
    TagSummary,
    UserRole,
)
from ..visibility import Viewer, visibility_clause
from .base import (
    AnswerRecord,
    CategoryRecord,
    EmbeddingStats,
    QuestionFilters,
    QuestionRecord,
    SourceQuestion,
    TagRecord,
    UserRecord,
)

# Cosine distance between the stored embedding and the bound query vector.
_COSINE_DISTANCE = "(1 - list_cosine_similarity(e.embedding, ?::FLOAT[]))"


def _search_words(query: str) -> list[str]:
    return [word for word in query.split() if word]


def _placeholders(count: int) -> str:
    return ", ".join(["?"] * count)


class DuckDBStorage:
    """DuckDB-backed persistence for the question store."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        self.db_path = str(Path(db_path).expanduser().resolve())
        self.read_only = read_only
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def initialize(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR PRIMARY KEY,
                email VARCHAR NOT NULL,
                full_name VARCHAR NOT NULL,
                role VARCHAR NOT NULL DEFAULT 'STUDENT'
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                slug VARCHAR NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tags (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                slug VARCHAR NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS questions (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                content_text VARCHAR NOT NULL DEFAULT '',
                status VARCHAR NOT NULL DEFAULT 'OPEN',
                approval_status VARCHAR NOT NULL DEFAULT 'PENDING',
                author_id VARCHAR NOT NULL,
                category_id VARCHAR,
                is_anonymous BOOLEAN DEFAULT FALSE,
                views INTEGER DEFAULT 0,
                accepted_answer_id VARCHAR,
                duplicate_of_id VARCHAR,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS question_categories (
                question_id VARCHAR NOT NULL,
                category_id VARCHAR NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS question_tags (
                question_id VARCHAR NOT NULL,
                tag_id VARCHAR NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS answers (
                id VARCHAR PRIMARY KEY,
                question_id VARCHAR NOT NULL,
                author_id VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                content_text VARCHAR NOT NULL DEFAULT '',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        # Kept outside `questions` so replacing a vector never rewrites a keyed row.
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS question_embeddings (
                question_id VARCHAR NOT NULL,
                embedding FLOAT[] NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_user(self, user: UserRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO users (id, email, full_name, role)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = excluded.email,
                full_name = excluded.full_name,
                role = excluded.role
            """,
            [user.id, user.email, user.full_name, UserRole(user.role).value],
        )

    def upsert_category(self, category: CategoryRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO categories (id, name, slug)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, slug = excluded.slug
            """,
            [category.id, category.name, category.slug],
        )

    def upsert_tag(self, tag: TagRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO tags (id, name, slug)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, slug = excluded.slug
            """,
            [tag.id, tag.name, tag.slug],
        )

    def upsert_question(self, question: QuestionRecord) -> None:
        """Insert or update a question.

        A stored embedding is left untouched, even when the text changes.
        """
        self._conn.execute(
            """
            INSERT INTO questions (
                id, title, content, content_text, status, approval_status,
                author_id, category_id, is_anonymous, views,
                accepted_answer_id, duplicate_of_id, created_at, updated_at
            )
            VALUES (
                ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                coalesce(?::TIMESTAMP, now()::TIMESTAMP), now()::TIMESTAMP
            )
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                content = excluded.content,
                content_text = excluded.content_text,
                status = excluded.status,
                approval_status = excluded.approval_status,
                author_id = excluded.author_id,
                category_id = excluded.category_id,
                is_anonymous = excluded.is_anonymous,
                views = excluded.views,
                accepted_answer_id = excluded.accepted_answer_id,
                duplicate_of_id = excluded.duplicate_of_id,
                updated_at = now()::TIMESTAMP
            """,
            [
                question.id,
                question.title,
                question.content,
                extract_plain_text(question.content),
                QuestionStatus(question.status).value,
                ApprovalStatus(question.approval_status).value,
                question.author_id,
                question.category_id,
                question.is_anonymous,
                question.views,
                question.accepted_answer_id,
                question.duplicate_of_id,
                question.created_at,
            ],
        )

        self._conn.execute(
            "DELETE FROM question_categories WHERE question_id = ?", [question.id]
        )
        if question.category_ids:
            self._conn.executemany(
                "INSERT INTO question_categories (question_id, category_id) VALUES (?, ?)",
                [(question.id, category_id) for category_id in question.category_ids],
            )

        self._conn.execute("DELETE FROM question_tags WHERE question_id = ?", [question.id])
        if question.tag_ids:
            self._conn.executemany(
                "INSERT INTO question_tags (question_id, tag_id) VALUES (?, ?)",
                [(question.id, tag_id) for tag_id in question.tag_ids],
            )

    def add_answer(self, answer: AnswerRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO answers (id, question_id, author_id, content, content_text, created_at)
            VALUES (?, ?, ?, ?, ?, coalesce(?::TIMESTAMP, now()::TIMESTAMP))
            ON CONFLICT(id) DO UPDATE SET
                content = excluded.content,
                content_text = excluded.content_text
            """,
            [
                answer.id,
                answer.question_id,
                answer.author_id,
                answer.content,
                extract_plain_text(answer.content),
                answer.created_at,
            ],
        )

    def store_question_embedding(self, question_id: str, embedding: list[float]) -> None:
        self._conn.execute(
            "DELETE FROM question_embeddings WHERE question_id = ?", [question_id]
        )
        self._conn.execute(
            """
            INSERT INTO question_embeddings (question_id, embedding)
            VALUES (?, ?::FLOAT[])
            """,
            [question_id, [float(value) for value in embedding]],
        )

    def clear_invalid_embeddings(self, *, dimensions: int) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM question_embeddings WHERE len(embedding) <> ?",
            [dimensions],
        ).fetchone()
        self._conn.execute(
            "DELETE FROM question_embeddings WHERE len(embedding) <> ?", [dimensions]
        )
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Single-question reads
    # ------------------------------------------------------------------

    def get_question(self, question_id: str) -> SourceQuestion | None:
        row = self._conn.execute(
            """
            SELECT id, title, content, approval_status, author_id
            FROM questions
            WHERE id = ?
            LIMIT 1
            """,
            [question_id],
        ).fetchone()
        if row is None:
            return None
        return self._row_to_source_question(row)

    def get_question_embedding(self, question_id: str) -> list[float] | None:
        row = self._conn.execute(
            """
            SELECT embedding
            FROM question_embeddings
            WHERE question_id = ?
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            [question_id],
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return [float(value) for value in row[0]]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @staticmethod
    def _term_clause(term: str) -> tuple[str, list[Any]]:
        """Match *term* in title, content text, category, author, or tag names."""
        sql = """(
            contains(lower(q.title), ?)
            OR contains(lower(q.content_text), ?)
            OR contains(lower(coalesce(c.name, '')), ?)
            OR contains(lower(coalesce(u.full_name, '')), ?)
            OR EXISTS (
                SELECT 1 FROM question_tags qt
                JOIN tags t ON t.id = qt.tag_id
                WHERE qt.question_id = q.id AND contains(lower(t.name), ?)
            )
        )"""
        return sql, [term] * 5

    @staticmethod
    def _answer_clause(term: str) -> tuple[str, list[Any]]:
        sql = """EXISTS (
            SELECT 1 FROM answers a
            WHERE a.question_id = q.id AND contains(lower(a.content_text), ?)
        )"""
        return sql, [term]

    def _text_clause(self, query: str) -> tuple[str, list[Any]]:
        phrase = query.strip().lower()
        words = _search_words(phrase)

        alternatives: list[str] = []
        params: list[Any] = []

        sql, clause_params = self._term_clause(phrase)
        alternatives.append(sql)
        params.extend(clause_params)

        if len(words) > 1:
            word_sqls: list[str] = []
            for word in words:
                sql, clause_params = self._term_clause(word)
                word_sqls.append(sql)
                params.extend(clause_params)
            alternatives.append("(" + " AND ".join(word_sqls) + ")")

        sql, clause_params = self._answer_clause(phrase)
        alternatives.append(sql)
        params.extend(clause_params)

        if len(words) > 1:
            word_sqls = []
            for word in words:
                sql, clause_params = self._answer_clause(word)
                word_sqls.append(sql)
                params.extend(clause_params)
            alternatives.append("(" + " AND ".join(word_sqls) + ")")

        return "(" + "\n OR ".join(alternatives) + ")", params

    @staticmethod
    def _filter_clauses(filters: QuestionFilters | None) -> tuple[list[str], list[Any]]:
        if filters is None:
            return [], []

        clauses: list[str] = []
        params: list[Any] = []
        if filters.category_id:
            clauses.append(
                """(q.category_id = ? OR EXISTS (
                    SELECT 1 FROM question_categories qc
                    WHERE qc.question_id = q.id AND qc.category_id = ?
                ))"""
            )
            params.extend([filters.category_id, filters.category_id])
        if filters.author_id:
            clauses.append("q.author_id = ?")
            params.append(filters.author_id)
        if filters.status is not None:
            clauses.append("q.status = ?")
            params.append(QuestionStatus(filters.status).value)
        if filters.approval_status is not None:
            clauses.append("q.approval_status = ?")
            params.append(ApprovalStatus(filters.approval_status).value)
        if filters.tags:
            names = [tag.lower() for tag in filters.tags]
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM question_tags qt
                    JOIN tags t ON t.id = qt.tag_id
                    WHERE qt.question_id = q.id AND lower(t.name) IN ({_placeholders(len(names))})
                )"""
            )
            params.extend(names)
        return clauses, params

    def keyword_search(
        self,
        *,
        query: str | None,
        viewer: Viewer,
        filters: QuestionFilters | None = None,
    ) -> list[str]:
        visibility_sql, params = visibility_clause(viewer, "q")
        clauses = [visibility_sql]

        filter_sqls, filter_params = self._filter_clauses(filters)
        clauses.extend(filter_sqls)
        params.extend(filter_params)

        if query and query.strip():
            text_sql, text_params = self._text_clause(query)
            clauses.append(text_sql)
            params.extend(text_params)

        sql = f"""
            SELECT q.id
            FROM questions q
            LEFT JOIN categories c ON c.id = q.category_id
            LEFT JOIN users u ON u.id = q.author_id
            WHERE {" AND ".join(clauses)}
            ORDER BY q.created_at DESC, q.id ASC
        """
        rows = self._conn.execute(sql, params).fetchall()
        return [str(row[0]) for row in rows]

    def vector_search(
        self,
        *,
        query_embedding: list[float],
        viewer: Viewer,
        limit: int,
        filters: QuestionFilters | None = None,
        exclude_ids: tuple[str, ...] = (),
    ) -> list[tuple[str, float]]:
        vector = [float(value) for value in query_embedding]
        visibility_sql, visibility_params = visibility_clause(viewer, "q")
        clauses = ["len(e.embedding) = ?", visibility_sql]
        where_params: list[Any] = [len(vector), *visibility_params]

        filter_sqls, filter_params = self._filter_clauses(filters)
        clauses.extend(filter_sqls)
        where_params.extend(filter_params)

        if exclude_ids:
            clauses.append(f"q.id NOT IN ({_placeholders(len(exclude_ids))})")
            where_params.extend(exclude_ids)

        # Filtering happens in the same statement as ORDER BY ... LIMIT so
        # invisible rows never take a slot in the top-k.
        sql = f"""
            SELECT q.id, {_COSINE_DISTANCE} AS distance
            FROM questions q
            JOIN question_embeddings e ON e.question_id = q.id
            WHERE {" AND ".join(clauses)}
            ORDER BY distance ASC NULLS LAST, q.id ASC
            LIMIT ?
        """
        params: list[Any] = [vector, *where_params, max(limit, 0)]
        rows = self._conn.execute(sql, params).fetchall()

        results: list[tuple[str, float]] = []
        for row in rows:
            similarity = 1.0 - float(row[1]) if row[1] is not None else math.nan
            results.append((str(row[0]), similarity))
        return results

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    def hydrate_questions(self, question_ids: list[str]) -> list[QuestionView]:
        if not question_ids:
            return []

        ids = list(dict.fromkeys(question_ids))
        placeholders = _placeholders(len(ids))
        rows = self._conn.execute(
            f"""
            SELECT
                q.id, q.title, q.content, q.status, q.approval_status, q.is_anonymous,
                q.author_id, q.views, q.accepted_answer_id, q.duplicate_of_id,
                q.created_at, q.updated_at,
                u.id, u.email, u.full_name, u.role,
                c.id, c.name, c.slug,
                (SELECT COUNT(*) FROM answers a WHERE a.question_id = q.id) AS answers_count
            FROM questions q
            LEFT JOIN users u ON u.id = q.author_id
            LEFT JOIN categories c ON c.id = q.category_id
            WHERE q.id IN ({placeholders})
            """,
            ids,
        ).fetchall()

        categories = self._categories_by_question(ids)
        tags = self._tags_by_question(ids)

        by_id: dict[str, QuestionView] = {}
        for row in rows:
            question_id = str(row[0])
            author = None
            if row[12] is not None:
                author = AuthorSummary(
                    id=str(row[12]),
                    email=str(row[13]),
                    full_name=str(row[14]),
                    role=UserRole(str(row[15])),
                )
            category = None
            if row[16] is not None:
                category = CategorySummary(id=str(row[16]), name=str(row[17]), slug=str(row[18]))
            by_id[question_id] = QuestionView(
                id=question_id,
                title=str(row[1]),
                content=str(row[2]),
                status=QuestionStatus(str(row[3])),
                approval_status=ApprovalStatus(str(row[4])),
                is_anonymous=bool(row[5]),
                author_id=str(row[6]),
                views=int(row[7] or 0),
                accepted_answer_id=row[8],
                duplicate_of_id=row[9],
                created_at=row[10],
                updated_at=row[11],
                author=author,
                category=category,
                categories=categories.get(question_id, []),
                tags=tags.get(question_id, []),
                answers_count=int(row[19] or 0),
            )
        return [by_id[question_id] for question_id in ids if question_id in by_id]

    def _categories_by_question(self, ids: list[str]) -> dict[str, list[CategorySummary]]:
        rows = self._conn.execute(
            f"""
            SELECT qc.question_id, c.id, c.name, c.slug
            FROM question_categories qc
            JOIN categories c ON c.id = qc.category_id
            WHERE qc.question_id IN ({_placeholders(len(ids))})
            ORDER BY c.name ASC
            """,
            ids,
        ).fetchall()
        grouped: dict[str, list[CategorySummary]] = {}
        for row in rows:
            grouped.setdefault(str(row[0]), []).append(
                CategorySummary(id=str(row[1]), name=str(row[2]), slug=str(row[3]))
            )
        return grouped

    def _tags_by_question(self, ids: list[str]) -> dict[str, list[TagSummary]]:
        rows = self._conn.execute(
            f"""
            SELECT qt.question_id, t.id, t.name, t.slug
            FROM question_tags qt
            JOIN tags t ON t.id = qt.tag_id
            WHERE qt.question_id IN ({_placeholders(len(ids))})
            ORDER BY t.name ASC
            """,
            ids,
        ).fetchall()
        grouped: dict[str, list[TagSummary]] = {}
        for row in rows:
            grouped.setdefault(str(row[0]), []).append(
                TagSummary(id=str(row[1]), name=str(row[2]), slug=str(row[3]))
            )
        return grouped

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def embedding_stats(self, *, dimensions: int) -> EmbeddingStats:
        row = self._conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM questions),
                (SELECT COUNT(DISTINCT e.question_id)
                   FROM question_embeddings e JOIN questions q ON q.id = e.question_id),
                (SELECT COUNT(DISTINCT e.question_id)
                   FROM question_embeddings e JOIN questions q ON q.id = e.question_id
                   WHERE len(e.embedding) <> ?)
            """,
            [dimensions],
        ).fetchone()
        if row is None:
            return EmbeddingStats(total_questions=0, with_embeddings=0, invalid_dimensions=0)
        return EmbeddingStats(
            total_questions=int(row[0]),
            with_embeddings=int(row[1]),
            invalid_dimensions=int(row[2]),
        )

    def questions_missing_embeddings(
        self,
        *,
        dimensions: int,
        limit: int | None = None,
    ) -> list[SourceQuestion]:
        sql = """
            SELECT q.id, q.title, q.content, q.approval_status, q.author_id
            FROM questions q
            WHERE NOT EXISTS (
                SELECT 1 FROM question_embeddings e
                WHERE e.question_id = q.id AND len(e.embedding) = ?
            )
            ORDER BY q.created_at DESC, q.id ASC
        """
        params: list[Any] = [dimensions]
        if limit is not None:
            sql += "\nLIMIT ?"
            params.append(limit)
        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_source_question(row) for row in rows]

    @staticmethod
    def _row_to_source_question(row: tuple[Any, ...]) -> SourceQuestion:
        return SourceQuestion(
            id=str(row[0]),
            title=str(row[1]),
            content=str(row[2]),
            approval_status=ApprovalStatus(str(row[3])),
            author_id=str(row[4]),
        )
