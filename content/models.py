"""
content/models.py -- Domain dataclasses for content items and tags.

Pattern: Data class (pure data container, zero logic).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ContentStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"


@dataclass
class Content:
    """An article owned by its author.

    tags holds tag names; the content_tags join rows are managed by the
    repository. published_at records the most recent publish and is kept
    when the item is unpublished.
    """

    title: str
    body: str
    author_id: int
    id: int | None = None
    slug: str = ""
    summary: str | None = None
    status: ContentStatus = ContentStatus.DRAFT
    created_at: str | None = None
    updated_at: str | None = None
    published_at: str | None = None
    view_count: int = 0
    tags: list[str] = field(default_factory=list)


@dataclass
class Tag:
    name: str
    id: int | None = None
