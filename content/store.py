"""
content/store.py -- SQLAlchemy Core persistence for content, tags and their join.

Pattern: Repository + Data Mapper, bound to a unit-of-work connection (see
db/database.py). No method commits.

Visibility rules live here as queries: anonymous readers see Published items
only; an authenticated reader also sees their own drafts.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    or_,
    select,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from content.models import Content, ContentStatus, Tag
from core.errors import ConflictError
from db.metadata import metadata, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

contents = Table(
    "contents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(200), nullable=False),
    Column("slug", String(250), nullable=False, unique=True),
    Column("body", Text, nullable=False),
    Column("summary", String(500)),
    Column("status", String(20), nullable=False, server_default=ContentStatus.DRAFT.value),
    Column("author_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("published_at", String(32)),
    Column("view_count", Integer, nullable=False, server_default="0"),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
)

content_tags = Table(
    "content_tags",
    metadata,
    Column("content_id", Integer, ForeignKey("contents.id"), nullable=False),
    Column("tag_id", Integer, ForeignKey("tags.id"), nullable=False),
    PrimaryKeyConstraint("content_id", "tag_id", name="pk_content_tags"),
)

_MUTABLE_FIELDS = {"title", "slug", "body", "summary", "status", "updated_at", "published_at"}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ContentRepository:
    """Repository for Content and Tag rows, bound to one unit-of-work connection."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def create(self, content: Content) -> int:
        """Insert a content row (without tags) and return its id.

        Raises ConflictError if the slug is taken.
        """
        created_at = content.created_at or now_iso()
        updated_at = content.updated_at or created_at
        try:
            result = self._conn.execute(
                contents.insert().values(
                    title=content.title,
                    slug=content.slug,
                    body=content.body,
                    summary=content.summary,
                    status=ContentStatus(content.status).value,
                    author_id=content.author_id,
                    created_at=created_at,
                    updated_at=updated_at,
                    published_at=content.published_at,
                )
            )
        except IntegrityError as exc:
            raise ConflictError(f"Content slug {content.slug!r} already exists") from exc
        content.id = result.inserted_primary_key[0]
        content.created_at = created_at
        content.updated_at = updated_at
        return content.id

    def get(self, content_id: int) -> Content | None:
        row = self._conn.execute(contents.select().where(contents.c.id == content_id)).fetchone()
        if row is None:
            return None
        content = _row_to_content(row)
        content.tags = self.tag_names_for(content.id)
        return content

    def slug_exists(self, slug: str, exclude_id: int | None = None) -> bool:
        stmt = select(contents.c.id).where(contents.c.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(contents.c.id != exclude_id)
        return self._conn.execute(stmt).fetchone() is not None

    def update(self, content_id: int, **fields) -> bool:
        """Update mutable columns. Returns True if a row was updated."""
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown content fields: {unknown!r}")
        if "status" in fields:
            fields["status"] = ContentStatus(fields["status"]).value
        try:
            result = self._conn.execute(contents.update().where(contents.c.id == content_id).values(**fields))
        except IntegrityError as exc:
            raise ConflictError(f"Content slug {fields.get('slug')!r} already exists") from exc
        return result.rowcount > 0

    def delete(self, content_id: int) -> bool:
        """Delete a content row and its tag links. Tags themselves are kept."""
        self._conn.execute(content_tags.delete().where(content_tags.c.content_id == content_id))
        result = self._conn.execute(contents.delete().where(contents.c.id == content_id))
        return result.rowcount > 0

    def list_visible(self, viewer_id: int | None = None) -> list[Content]:
        """Published items, plus the viewer's own items when viewer_id is given. Newest first."""
        condition = contents.c.status == ContentStatus.PUBLISHED.value
        if viewer_id is not None:
            condition = or_(condition, contents.c.author_id == viewer_id)
        rows = self._conn.execute(
            contents.select().where(condition).order_by(contents.c.created_at.desc(), contents.c.id.desc())
        ).fetchall()
        return self._with_tags(rows)

    def list_for_author(self, author_id: int) -> list[Content]:
        rows = self._conn.execute(
            contents.select()
            .where(contents.c.author_id == author_id)
            .order_by(contents.c.created_at.desc(), contents.c.id.desc())
        ).fetchall()
        return self._with_tags(rows)

    def _with_tags(self, rows) -> list[Content]:
        result = []
        for row in rows:
            content = _row_to_content(row)
            content.tags = self.tag_names_for(content.id)
            result.append(content)
        return result

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def get_tag_by_name(self, name: str) -> Tag | None:
        row = self._conn.execute(tags.select().where(tags.c.name == name)).fetchone()
        return Tag(id=row.id, name=row.name) if row is not None else None

    def create_tag(self, name: str) -> Tag:
        try:
            result = self._conn.execute(tags.insert().values(name=name))
        except IntegrityError as exc:
            raise ConflictError(f"Tag {name!r} already exists") from exc
        return Tag(id=result.inserted_primary_key[0], name=name)

    def link_tag(self, content_id: int, tag_id: int) -> None:
        try:
            self._conn.execute(content_tags.insert().values(content_id=content_id, tag_id=tag_id))
        except IntegrityError as exc:
            raise ConflictError(f"Tag {tag_id} already linked to content {content_id}") from exc

    def unlink_tag(self, content_id: int, tag_id: int) -> bool:
        result = self._conn.execute(
            content_tags.delete().where((content_tags.c.content_id == content_id) & (content_tags.c.tag_id == tag_id))
        )
        return result.rowcount > 0

    def tags_for(self, content_id: int) -> list[Tag]:
        rows = self._conn.execute(
            select(tags)
            .join(content_tags, content_tags.c.tag_id == tags.c.id)
            .where(content_tags.c.content_id == content_id)
            .order_by(tags.c.name)
        ).fetchall()
        return [Tag(id=r.id, name=r.name) for r in rows]

    def tag_names_for(self, content_id: int) -> list[str]:
        return [tag.name for tag in self.tags_for(content_id)]


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_content(row) -> Content:
    return Content(
        id=row.id,
        title=row.title,
        slug=row.slug,
        body=row.body,
        summary=row.summary,
        status=ContentStatus(row.status),
        author_id=row.author_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        published_at=row.published_at,
        view_count=row.view_count or 0,
    )
