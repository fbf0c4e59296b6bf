"""
Approval-aware visibility rules.

Admins see every question. Authenticated users see approved questions plus
their own pending or rejected ones. Anonymous callers see approved questions
only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import ANONYMOUS_AUTHOR, ApprovalStatus, AuthorSummary, QuestionView, UserRole


@dataclass(frozen=True)
class Viewer:
    """The caller identity attached to a request."""

    user_id: str | None = None
    role: UserRole | None = None

    @classmethod
    def anonymous(cls) -> "Viewer":
        return cls()

    @classmethod
    def from_headers(cls, user_id: str | None, role: str | None) -> "Viewer":
        if not user_id or not user_id.strip():
            return cls.anonymous()
        parsed_role: UserRole | None = None
        if role:
            try:
                parsed_role = UserRole(role.strip().upper())
            except ValueError:
                parsed_role = None
        return cls(user_id=user_id.strip(), role=parsed_role or UserRole.STUDENT)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role is UserRole.ADMIN


def is_visible(
    viewer: Viewer,
    author_id: str,
    approval_status: ApprovalStatus | str,
) -> bool:
    """Return True when *viewer* may see a question with these attributes."""
    if viewer.is_admin:
        return True
    status = ApprovalStatus(approval_status)
    if status is ApprovalStatus.APPROVED:
        return True
    return viewer.is_authenticated and author_id == viewer.user_id


def visibility_clause(viewer: Viewer, alias: str = "q") -> tuple[str, list[Any]]:
    """SQL predicate equivalent to ``is_visible`` for a questions table alias."""
    if viewer.is_admin:
        return "TRUE", []
    if viewer.is_authenticated:
        return (
            f"({alias}.approval_status = ? "
            f"OR ({alias}.approval_status IN (?, ?) AND {alias}.author_id = ?))",
            [
                ApprovalStatus.APPROVED.value,
                ApprovalStatus.PENDING.value,
                ApprovalStatus.REJECTED.value,
                viewer.user_id,
            ],
        )
    return f"{alias}.approval_status = ?", [ApprovalStatus.APPROVED.value]


def should_hide_author(viewer: Viewer, *, is_anonymous: bool, author_id: str) -> bool:
    """Anonymous questions hide their author from everyone but staff and the author."""
    if not is_anonymous or viewer.role in (UserRole.ADMIN, UserRole.ADVISOR):
        return False
    return viewer.user_id != author_id


def author_for_viewer(viewer: Viewer, question: QuestionView) -> AuthorSummary | None:
    """The author record *viewer* should see for *question*."""
    if should_hide_author(
        viewer,
        is_anonymous=question.is_anonymous,
        author_id=question.author_id,
    ):
        return ANONYMOUS_AUTHOR
    return question.author
