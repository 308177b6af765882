"""
content/service.py -- Content lifecycle: create, edit, delete, publish.

Authorization goes through one PolicyDecisionPoint per unit of work:
  create            Content:Create (no owner bypass, nothing is owned yet)
  update            owner, or Content:Update
  delete            owner, or Content:Delete
  publish/unpublish owner, or Content:Publish

The unit of work is opened before the permission check and committed only
after the state change and its audit records are written. A denied check
raises inside the `with` block, so nothing that happened before it survives.

Reads enforce visibility: drafts are shown only to their author and to
holders of Content:Update. Everyone else gets NotFoundError, so the
existence of a draft does not leak.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from audit.models import AuditActor, AuditEntry, AuditOperation, snapshot
from auth.permissions import PermissionEvaluator, PolicyDecisionPoint
from content.models import Content, ContentStatus
from core.errors import AuthorizationError, NotFoundError
from db.metadata import now_iso

logger = logging.getLogger("securecms.content")

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase ASCII slug: "Hello, Wörld!" -> "hello-world"."""
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _NON_SLUG.sub("-", ascii_text.lower()).strip("-") or "content"


def _unique_slug(repo, title: str, exclude_id: int | None = None) -> str:
    base = slugify(title)
    slug = base
    counter = 1
    while repo.slug_exists(slug, exclude_id=exclude_id):
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def _clean_tags(names: list[str] | None) -> list[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    return list(dict.fromkeys(n.strip() for n in names or [] if n and n.strip()))


class ContentService:
    def __init__(self, db) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _pdp(uow) -> PolicyDecisionPoint:
        return PolicyDecisionPoint(PermissionEvaluator(uow.rbac))

    @staticmethod
    def _load(uow, content_id: int) -> Content:
        content = uow.content.get(content_id)
        if content is None:
            raise NotFoundError("Content", content_id)
        return content

    @staticmethod
    def _require(pdp: PolicyDecisionPoint, actor: AuditActor, action: str, owner_id: int | None = None) -> None:
        if not pdp.decide(actor.subject_id, "Content", action, owner_id=owner_id):
            raise AuthorizationError(f"Content:{action} permission required")

    def _attach_tags(self, uow, content: Content, names: list[str], actor: AuditActor) -> None:
        for name in names:
            tag = uow.content.get_tag_by_name(name)
            if tag is None:
                tag = uow.content.create_tag(name)
                uow.audit.record(AuditEntry("tags", AuditOperation.CREATE, actor, new_values=snapshot(tag)))
            uow.content.link_tag(content.id, tag.id)
            uow.audit.record(
                AuditEntry(
                    "content_tags",
                    AuditOperation.CREATE,
                    actor,
                    new_values={"content_id": content.id, "tag_id": tag.id},
                )
            )

    def _detach_tags(self, uow, content_id: int, actor: AuditActor, keep: set[str] = frozenset()) -> None:
        for tag in uow.content.tags_for(content_id):
            if tag.name in keep:
                continue
            uow.content.unlink_tag(content_id, tag.id)
            uow.audit.record(
                AuditEntry(
                    "content_tags",
                    AuditOperation.DELETE,
                    actor,
                    old_values={"content_id": content_id, "tag_id": tag.id},
                )
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        actor: AuditActor,
        title: str,
        body: str,
        summary: str | None = None,
        tags: list[str] | None = None,
    ) -> Content:
        """Create a Draft owned by the actor. Requires Content:Create."""
        with self._db.unit_of_work(write=True) as uow:
            self._require(self._pdp(uow), actor, "Create")
            content = Content(
                title=title,
                body=body,
                summary=summary,
                author_id=actor.subject_id,
                slug=_unique_slug(uow.content, title),
            )
            uow.content.create(content)

            names = _clean_tags(tags)
            self._attach_tags(uow, content, names, actor)
            content.tags = sorted(names)
            uow.audit.record(AuditEntry("contents", AuditOperation.CREATE, actor, new_values=snapshot(content)))
            uow.commit()
        logger.info("Content %s created by subject %s", content.id, actor.subject_id)
        return content

    def update(
        self,
        actor: AuditActor,
        content_id: int,
        title: str | None = None,
        body: str | None = None,
        summary: str | None = None,
        tags: list[str] | None = None,
    ) -> Content:
        """Edit fields that are given. tags, when given, replaces the tag set.

        A new title regenerates the slug. Owner or Content:Update.
        """
        with self._db.unit_of_work(write=True) as uow:
            content = self._load(uow, content_id)
            self._require(self._pdp(uow), actor, "Update", owner_id=content.author_id)
            before = snapshot(content)

            fields: dict = {"updated_at": now_iso()}
            if title:
                fields["title"] = title
                fields["slug"] = _unique_slug(uow.content, title, exclude_id=content_id)
            if body:
                fields["body"] = body
            if summary is not None:
                fields["summary"] = summary
            uow.content.update(content_id, **fields)

            if tags is not None:
                names = _clean_tags(tags)
                current = set(uow.content.tag_names_for(content_id))
                self._detach_tags(uow, content_id, actor, keep=set(names))
                self._attach_tags(uow, content, [n for n in names if n not in current], actor)

            after = uow.content.get(content_id)
            uow.audit.record(
                AuditEntry("contents", AuditOperation.UPDATE, actor, old_values=before, new_values=snapshot(after))
            )
            uow.commit()
        logger.info("Content %s updated by subject %s", content_id, actor.subject_id)
        return after

    def delete(self, actor: AuditActor, content_id: int) -> None:
        """Owner or Content:Delete. Tag links go with the item; tags stay."""
        with self._db.unit_of_work(write=True) as uow:
            content = self._load(uow, content_id)
            self._require(self._pdp(uow), actor, "Delete", owner_id=content.author_id)
            self._detach_tags(uow, content_id, actor)
            uow.content.delete(content_id)
            uow.audit.record(AuditEntry("contents", AuditOperation.DELETE, actor, old_values=snapshot(content)))
            uow.commit()
        logger.info("Content %s deleted by subject %s", content_id, actor.subject_id)

    def publish(self, actor: AuditActor, content_id: int) -> Content:
        """Owner or Content:Publish. Permission check, write and audit share one transaction."""
        return self._set_status(actor, content_id, ContentStatus.PUBLISHED)

    def unpublish(self, actor: AuditActor, content_id: int) -> Content:
        """Back to Draft. Checked as Content:Publish."""
        return self._set_status(actor, content_id, ContentStatus.DRAFT)

    def _set_status(self, actor: AuditActor, content_id: int, status: ContentStatus) -> Content:
        with self._db.unit_of_work(write=True) as uow:
            content = self._load(uow, content_id)
            self._require(self._pdp(uow), actor, "Publish", owner_id=content.author_id)
            before = snapshot(content)

            stamp = now_iso()
            fields: dict = {"status": status, "updated_at": stamp}
            if status is ContentStatus.PUBLISHED:
                fields["published_at"] = stamp
            uow.content.update(content_id, **fields)

            after = uow.content.get(content_id)
            uow.audit.record(
                AuditEntry("contents", AuditOperation.UPDATE, actor, old_values=before, new_values=snapshot(after))
            )
            uow.commit()
        logger.info("Content %s set to %s by subject %s", content_id, status.value, actor.subject_id)
        return after

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, content_id: int, viewer_id: int | None = None) -> Content:
        with self._db.unit_of_work() as uow:
            content = self._load(uow, content_id)
            if content.status is ContentStatus.PUBLISHED or viewer_id == content.author_id:
                return content
            if viewer_id is not None and PermissionEvaluator(uow.rbac).has_permission(viewer_id, "Content", "Update"):
                return content
        raise NotFoundError("Content", content_id)

    def list_visible(self, viewer_id: int | None = None) -> list[Content]:
        """Published items for everyone, plus the viewer's own drafts."""
        with self._db.unit_of_work() as uow:
            return uow.content.list_visible(viewer_id)

    def list_for_author(self, author_id: int) -> list[Content]:
        with self._db.unit_of_work() as uow:
            return uow.content.list_for_author(author_id)
