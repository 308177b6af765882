"""Unit tests for content/service.py -- content lifecycle under RBAC.

Covers:
- Create requires Content:Create; items start as Draft with a unique slug
- Owner bypass for update/delete/publish; other subjects need the grant
- Publish/unpublish is atomic with its audit record
- Draft visibility: author and Content:Update holders only
- Tag replacement on update
"""

import pytest

from audit.models import AuditOperation
from audit.store import AuditRecorder
from content.models import ContentStatus
from content.service import ContentService, slugify
from core.errors import AuditWriteError, AuthorizationError, NotFoundError


def _audit(db, table_name: str):
    with db.unit_of_work() as uow:
        return uow.audit.query(table_name=table_name)


@pytest.fixture
def people(make_subject, actor_for):
    """Three subjects: an Author who owns content, a second Author, and an Editor."""
    owner = make_subject("olive")
    other = make_subject("oscar")
    editor = make_subject("edith", role="Editor")
    return {
        "owner": actor_for(owner),
        "other": actor_for(other),
        "editor": actor_for(editor),
    }


class TestSlugify:
    @pytest.mark.parametrize(
        ("title", "slug"),
        [("Hello World", "hello-world"), ("  Crème brûlée!  ", "creme-brulee"), ("???", "content")],
    )
    def test_slugify(self, title: str, slug: str) -> None:
        assert slugify(title) == slug


class TestCreate:
    def test_create_draft(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "First Post", "Body", tags=["news", " news ", "", "tech"])

        assert item.status is ContentStatus.DRAFT
        assert item.slug == "first-post"
        assert item.author_id == people["owner"].subject_id
        assert item.tags == ["news", "tech"]
        assert item.published_at is None

        created = _audit(db, "contents")[0]
        assert created.operation is AuditOperation.CREATE
        assert created.new_values["id"] == item.id
        assert created.new_values["status"] == "Draft"
        assert len(_audit(db, "content_tags")) == 2

    def test_create_record_carries_final_tags(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Hello", "Body", tags=["b", "a"])

        created = _audit(db, "contents")[0]
        assert created.new_values["tags"] == item.tags == ["a", "b"]

    def test_duplicate_titles_get_distinct_slugs(self, content_service: ContentService, people) -> None:
        first = content_service.create(people["owner"], "Same Title", "a")
        second = content_service.create(people["other"], "Same Title", "b")
        assert (first.slug, second.slug) == ("same-title", "same-title-1")

    def test_create_requires_permission(self, db, content_service: ContentService, make_subject, actor_for) -> None:
        nobody = actor_for(make_subject("nadia", role="Nobody"))
        before = len(_audit(db, "contents"))
        with pytest.raises(AuthorizationError):
            content_service.create(nobody, "Nope", "body")
        assert len(_audit(db, "contents")) == before
        assert content_service.list_for_author(nobody.subject_id) == []


class TestPublish:
    def test_owner_may_publish_without_grant(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        published = content_service.publish(people["owner"], item.id)

        assert published.status is ContentStatus.PUBLISHED
        assert published.published_at is not None
        record = _audit(db, "contents")[0]
        assert record.operation is AuditOperation.UPDATE
        assert record.old_values["status"] == "Draft"
        assert record.new_values["status"] == "Published"
        assert record.user_id == people["owner"].subject_id

    def test_non_owner_without_grant_is_denied(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        before = len(_audit(db, "contents"))
        with pytest.raises(AuthorizationError):
            content_service.publish(people["other"], item.id)
        assert content_service.get(item.id, people["owner"].subject_id).status is ContentStatus.DRAFT
        assert len(_audit(db, "contents")) == before

    def test_editor_may_publish_any_item(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        assert content_service.publish(people["editor"], item.id).status is ContentStatus.PUBLISHED

    def test_unpublish_keeps_published_at(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        published = content_service.publish(people["owner"], item.id)
        draft = content_service.unpublish(people["owner"], item.id)
        assert draft.status is ContentStatus.DRAFT
        assert draft.published_at == published.published_at

    def test_publish_unknown_item(self, content_service: ContentService, people) -> None:
        with pytest.raises(NotFoundError):
            content_service.publish(people["editor"], 9999)

    def test_audit_failure_leaves_status_unchanged(self, content_service: ContentService, people, monkeypatch) -> None:
        item = content_service.create(people["owner"], "Mine", "body")

        def failing_record(self, entry):
            raise AuditWriteError("audit store unavailable")

        monkeypatch.setattr(AuditRecorder, "record", failing_record)
        with pytest.raises(AuditWriteError):
            content_service.publish(people["owner"], item.id)
        monkeypatch.undo()

        assert content_service.get(item.id, people["owner"].subject_id).status is ContentStatus.DRAFT


class TestUpdateAndDelete:
    def test_title_change_regenerates_slug(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Old Title", "body")
        updated = content_service.update(people["owner"], item.id, title="New Title")
        assert updated.slug == "new-title"
        assert updated.body == "body"

    def test_tags_are_replaced(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Tagged", "body", tags=["a", "b"])
        updated = content_service.update(people["owner"], item.id, tags=["b", "c"])
        assert updated.tags == ["b", "c"]
        ops = [r.operation for r in _audit(db, "content_tags")[:2]]
        assert sorted(op.value for op in ops) == ["create", "delete"]

    def test_non_owner_author_cannot_edit(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        with pytest.raises(AuthorizationError):
            content_service.update(people["other"], item.id, body="hijacked")

    def test_editor_may_edit(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        assert content_service.update(people["editor"], item.id, body="fixed").body == "fixed"

    def test_delete_by_owner(self, db, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Doomed", "body", tags=["x"])
        content_service.delete(people["owner"], item.id)

        with pytest.raises(NotFoundError):
            content_service.get(item.id, people["owner"].subject_id)
        record = _audit(db, "contents")[0]
        assert record.operation is AuditOperation.DELETE
        assert record.old_values["id"] == item.id
        assert record.new_values is None

    def test_delete_by_non_owner_author_is_denied(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Mine", "body")
        with pytest.raises(AuthorizationError):
            content_service.delete(people["other"], item.id)


class TestVisibility:
    def test_draft_visibility(self, content_service: ContentService, people) -> None:
        item = content_service.create(people["owner"], "Secret Draft", "body")

        assert content_service.get(item.id, people["owner"].subject_id).id == item.id
        assert content_service.get(item.id, people["editor"].subject_id).id == item.id
        with pytest.raises(NotFoundError):
            content_service.get(item.id, people["other"].subject_id)
        with pytest.raises(NotFoundError):
            content_service.get(item.id, None)

    def test_list_visible(self, content_service: ContentService, people) -> None:
        draft = content_service.create(people["owner"], "Draft", "body")
        public = content_service.create(people["owner"], "Public", "body")
        content_service.publish(people["owner"], public.id)

        assert [c.id for c in content_service.list_visible(None)] == [public.id]
        assert {c.id for c in content_service.list_visible(people["owner"].subject_id)} == {draft.id, public.id}
        assert [c.id for c in content_service.list_visible(people["other"].subject_id)] == [public.id]
