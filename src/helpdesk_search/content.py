"""
Plain-text extraction for question and answer content.

Content is stored either as block-JSON written by the rich-text editor
(``{"blocks": [{"type": "paragraph", "data": {...}}, ...]}``) or as legacy
HTML. Everything here is pure.
"""

from __future__ import annotations

import html
import json
import re
from typing import Any


_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(text: str) -> str:
    """Remove tags and unescape entities."""
    return html.unescape(_TAG_RE.sub("", text)).strip()


def _parse_blocks(content: str) -> list[dict[str, Any]] | None:
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    blocks = parsed.get("blocks")
    if not isinstance(blocks, list):
        return None
    return [block for block in blocks if isinstance(block, dict)]


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _list_item_texts(items: Any) -> list[str]:
    texts: list[str] = []
    if not isinstance(items, list):
        return texts
    for item in items:
        if isinstance(item, str):
            texts.append(strip_html(item))
        elif isinstance(item, dict):
            texts.append(strip_html(_as_text(item.get("content"))))
            # Nested lists keep their children under "items".
            texts.extend(_list_item_texts(item.get("items")))
    return [text for text in texts if text]


def _block_texts(block: dict[str, Any]) -> list[str]:
    block_type = block.get("type")
    data = block.get("data")
    if not isinstance(data, dict):
        return []

    if block_type in {"paragraph", "header", "quote"}:
        return [strip_html(_as_text(data.get("text")))]
    if block_type == "list":
        return _list_item_texts(data.get("items"))
    if block_type == "code":
        return [_as_text(data.get("code"))]
    if block_type == "linkTool":
        meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
        return [
            _as_text(data.get("link")),
            _as_text(meta.get("title")),
            _as_text(meta.get("description")),
        ]
    if block_type == "table":
        cells: list[str] = []
        rows = data.get("content")
        if isinstance(rows, list):
            for row in rows:
                if isinstance(row, list):
                    cells.extend(strip_html(_as_text(cell)) for cell in row)
        return cells
    return []


def extract_plain_text(content: str) -> str:
    """Return searchable plain text for block-JSON or HTML content.

    Block text is joined with single spaces. When the content is not
    block-JSON, or no block yields text, the raw string is HTML-stripped
    instead. A non-empty input never produces an empty result.
    """
    if not content or not isinstance(content, str):
        return ""

    blocks = _parse_blocks(content)
    if blocks is not None:
        parts = [text for block in blocks for text in _block_texts(block) if text.strip()]
        extracted = " ".join(part.strip() for part in parts).strip()
        if extracted:
            return extracted

    cleaned = strip_html(content)
    return cleaned or content


def extract_text_preview(content: str, max_length: int = 150) -> str:
    """Short preview built from the first few blocks."""
    if not content:
        return ""

    blocks = _parse_blocks(content)
    if blocks is None:
        text = strip_html(content)
        return text[:max_length] + "..." if len(text) > max_length else text

    parts: list[str] = []
    for block in blocks[:3]:
        block_type = block.get("type")
        if block_type == "list":
            items = _block_texts(block)
            if items:
                parts.append(items[0])
        elif block_type in {"paragraph", "header"}:
            texts = _block_texts(block)
            if texts and texts[0]:
                parts.append(texts[0])
        if len(" ".join(parts)) >= max_length:
            break

    preview = " ".join(parts).strip()
    return preview[:max_length] + "..." if len(preview) > max_length else preview


def extract_images(content: str) -> list[str]:
    """URLs of image blocks, in document order."""
    blocks = _parse_blocks(content) if content else None
    if not blocks:
        return []

    images: list[str] = []
    for block in blocks:
        if block.get("type") != "image":
            continue
        data = block.get("data")
        if not isinstance(data, dict):
            continue
        file_info = data.get("file")
        url = file_info.get("url") if isinstance(file_info, dict) else None
        url = url or data.get("url")
        if isinstance(url, str) and url:
            images.append(url)
    return images
