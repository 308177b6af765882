"""Unit tests for audit/store.py -- the append-only audit trail.

Covers:
- record() stores actor, operation and JSON state, and returns the id
- create/delete entries with contradictory state are refused
- query filters (table, subject, entity), newest-first order and page size
- entity matching does not confuse id 1 with id 10 or 100
- An audit write failure rolls back the mutation it describes
"""

import pytest
from sqlalchemy.exc import OperationalError

from audit.models import SYSTEM_ACTOR, AuditActor, AuditEntry, AuditOperation
from audit.store import DEFAULT_PAGE_SIZE, SCOPED_PAGE_SIZE, AuditRecorder
from auth.models import Role
from core.errors import AuditWriteError

ALICE = AuditActor(subject_id=1, username="alice", ip_address="10.0.0.1", user_agent="pytest")


def _write(db, *entries: AuditEntry) -> list[int]:
    with db.unit_of_work() as uow:
        ids = [uow.audit.record(e) for e in entries]
        uow.commit()
    return ids


class TestRecord:
    def test_record_round_trips(self, db) -> None:
        (record_id,) = _write(
            db, AuditEntry("contents", AuditOperation.CREATE, ALICE, new_values={"id": 5, "title": "Hi"})
        )
        with db.unit_of_work() as uow:
            record = uow.audit.query(table_name="contents")[0]
        assert record.id == record_id
        assert record.operation is AuditOperation.CREATE
        assert record.user_id == 1
        assert record.username == "alice"
        assert record.ip_address == "10.0.0.1"
        assert record.user_agent == "pytest"
        assert record.old_values is None
        assert record.new_values == {"id": 5, "title": "Hi"}
        assert record.timestamp

    def test_system_actor_has_no_subject(self, db) -> None:
        _write(db, AuditEntry("roles", AuditOperation.CREATE, SYSTEM_ACTOR, new_values={"id": 1}))
        with db.unit_of_work() as uow:
            record = uow.audit.query(table_name="roles")[0]
        assert record.user_id is None
        assert record.username == "system"

    def test_create_with_prior_state_is_refused(self, db) -> None:
        with db.unit_of_work() as uow:
            with pytest.raises(ValueError):
                uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, ALICE, old_values={"id": 1}))

    def test_delete_with_new_state_is_refused(self, db) -> None:
        with db.unit_of_work() as uow:
            with pytest.raises(ValueError):
                uow.audit.record(AuditEntry("roles", AuditOperation.DELETE, ALICE, new_values={"id": 1}))

    def test_uncommitted_records_are_discarded(self, db) -> None:
        with db.unit_of_work() as uow:
            before = uow.audit.count()
        with db.unit_of_work() as uow:
            uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, ALICE, new_values={"id": 1}))
        with db.unit_of_work() as uow:
            assert uow.audit.count() == before


class TestQuery:
    def test_newest_first(self, db) -> None:
        ids = _write(
            db,
            *(AuditEntry("tags", AuditOperation.CREATE, ALICE, new_values={"id": i}) for i in range(3)),
        )
        with db.unit_of_work() as uow:
            assert [r.id for r in uow.audit.query(table_name="tags")] == list(reversed(ids))

    def test_filters_combine(self, db) -> None:
        bob = AuditActor(subject_id=2, username="bob")
        _write(
            db,
            AuditEntry("contents", AuditOperation.CREATE, ALICE, new_values={"id": 1}),
            AuditEntry("contents", AuditOperation.CREATE, bob, new_values={"id": 2}),
            AuditEntry("tags", AuditOperation.CREATE, bob, new_values={"id": 3}),
        )
        with db.unit_of_work() as uow:
            records = uow.audit.query(table_name="contents", subject_id=2)
        assert [r.new_values["id"] for r in records] == [2]

    def test_entity_match_is_exact(self, db) -> None:
        _write(
            db,
            AuditEntry("contents", AuditOperation.CREATE, ALICE, new_values={"id": 1, "title": "one"}),
            AuditEntry("contents", AuditOperation.CREATE, ALICE, new_values={"author_id": 1, "id": 10}),
            AuditEntry("contents", AuditOperation.CREATE, ALICE, new_values={"id": 100}),
            AuditEntry("contents", AuditOperation.UPDATE, ALICE, old_values={"id": 1}, new_values={"id": 1}),
        )
        with db.unit_of_work() as uow:
            records = uow.audit.for_entity("contents", 1)
        assert len(records) == 2
        assert all(r.new_values["id"] == 1 for r in records)

    def test_entity_match_ignores_deletes(self, db) -> None:
        _write(db, AuditEntry("contents", AuditOperation.DELETE, ALICE, old_values={"id": 42}))
        with db.unit_of_work() as uow:
            assert uow.audit.for_entity("contents", 42) == []

    def test_page_sizes(self, db) -> None:
        _write(
            db,
            *(AuditEntry("tags", AuditOperation.CREATE, ALICE, new_values={"id": i}) for i in range(60)),
        )
        with db.unit_of_work() as uow:
            assert len(uow.audit.for_subject(1)) == SCOPED_PAGE_SIZE
            assert len(uow.audit.query(table_name="tags", page_size=5)) == 5
            assert len(uow.audit.query(table_name="tags")) == 60
        assert DEFAULT_PAGE_SIZE == 100


class _FailingConnection:
    def execute(self, *args, **kwargs):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))


class TestAtomicity:
    def test_audit_failure_rolls_back_the_mutation(self, db) -> None:
        with pytest.raises(AuditWriteError):
            with db.unit_of_work() as uow:
                uow.rbac.create_role(Role(name="Doomed"))
                uow.audit = AuditRecorder(_FailingConnection())
                uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, ALICE, new_values={"id": 1}))
                uow.commit()

        with db.unit_of_work() as uow:
            assert uow.rbac.get_role_by_name("Doomed") is None

    def test_recorder_exposes_no_mutation_of_existing_records(self) -> None:
        public = {name for name in dir(AuditRecorder) if not name.startswith("_")}
        assert public == {"record", "query", "for_subject", "for_entity", "count"}
