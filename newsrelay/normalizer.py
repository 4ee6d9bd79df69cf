from datetime import datetime, timezone
from typing import Any, Optional

from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from .categories import classify
from .schema import NormalizedArticle


def sanitize_html(text: str | None) -> str:
    if not text:
        return ""
    if "<" not in text:
        return text.strip()
    try:
        soup = BeautifulSoup(text, "lxml")
        return soup.get_text(" ", strip=True)
    except Exception:
        return text


def canon_author(author: Any) -> str:
    if not author:
        return ""
    if isinstance(author, (list, tuple)):
        return ", ".join(a.strip() for a in author if a and a.strip())
    return str(author).strip()


def parse_published(value: Any) -> datetime:
    """Provider timestamps (ISO strings, 'YYYY-MM-DD HH:MM:SS', epoch) -> aware UTC"""
    now = datetime.now(timezone.utc)
    if value is None or value == "":
        return now
    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(value, tz=timezone.utc)
        else:
            dt = dateparser.parse(str(value))
    except (ValueError, OverflowError):
        return now
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def build_article(
    source: str,
    *,
    title: Optional[str],
    description: Optional[str],
    url: Optional[str],
    author: Any = None,
    content: Optional[str] = None,
    image_url: Optional[str] = None,
    published_at: Any = None,
) -> NormalizedArticle:
    title = sanitize_html(title)
    description = sanitize_html(description)
    return NormalizedArticle(
        source=source,
        author=canon_author(author),
        title=title,
        description=description,
        content=sanitize_html(content),
        url=(url or "").strip() or None,
        image_url=image_url or "",
        published_at=parse_published(published_at),
        category=classify(title, description),
    )
