"""
audit/store.py -- SQLAlchemy Core persistence for the audit trail.

Pattern: Repository + Data Mapper, append-only. AuditRecorder exposes
record() and read queries; there is no update or delete method, and no other
module writes to audit_logs.

The recorder is bound to the caller's unit-of-work connection, so an audit
row commits in the same transaction as the mutation it describes. If the
insert fails, AuditWriteError propagates and the unit of work rolls back the
mutation too: an operation that cannot be audited does not happen.

old_values / new_values are stored as JSON text with sorted keys, which keeps
the entity-id match in for_entity() stable.

Queries return newest first, ordered by the monotonic id rather than the
timestamp string.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Column, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditEntry, AuditOperation, AuditRecord
from core.errors import AuditWriteError
from db.metadata import metadata, now_iso

logger = logging.getLogger("securecms.audit")

DEFAULT_PAGE_SIZE = 100
SCOPED_PAGE_SIZE = 50

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(100), nullable=False),
    Column("operation", String(10), nullable=False),
    # No foreign key: audit records outlive the rows they describe.
    Column("user_id", Integer),
    Column("username", String(100)),
    Column("old_values", Text),
    Column("new_values", Text),
    Column("timestamp", String(32), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", String(500)),
)


def _dump(state: dict | None) -> str | None:
    if not state:
        return None
    return json.dumps(state, sort_keys=True, default=str)


def _load(raw: str | None) -> dict | None:
    if raw is None:
        return None
    return json.loads(raw)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditRecorder:
    """Append-only audit repository bound to one unit-of-work connection.

    Usage:
        with db.unit_of_work(write=True) as uow:
            role_id = uow.rbac.create_role(role)
            uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, actor, new_values=snapshot(role)))
            uow.commit()
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def record(self, entry: AuditEntry) -> int:
        """Persist one audit record and return its id.

        Raises ValueError if the entry's states contradict its operation (a
        create with prior state or a delete with new state). Raises
        AuditWriteError if the insert itself fails.
        """
        operation = AuditOperation(entry.operation)
        if operation is AuditOperation.CREATE and entry.old_values:
            raise ValueError("create audit entries carry no prior state")
        if operation is AuditOperation.DELETE and entry.new_values:
            raise ValueError("delete audit entries carry no new state")

        try:
            result = self._conn.execute(
                audit_logs.insert().values(
                    table_name=entry.table_name,
                    operation=operation.value,
                    user_id=entry.actor.subject_id,
                    username=entry.actor.username,
                    old_values=_dump(entry.old_values),
                    new_values=_dump(entry.new_values),
                    timestamp=now_iso(),
                    ip_address=entry.actor.ip_address,
                    user_agent=entry.actor.user_agent,
                )
            )
        except SQLAlchemyError as exc:
            logger.error("Audit write failed for %s %s", operation.value, entry.table_name)
            raise AuditWriteError(f"Could not record {operation.value} on {entry.table_name}") from exc
        return result.inserted_primary_key[0]

    def query(
        self,
        table_name: str | None = None,
        subject_id: int | None = None,
        entity_id: int | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[AuditRecord]:
        """Return up to page_size records matching every given filter, newest first.

        entity_id is matched against the serialized new state, so records of
        deletes (which have none) are not returned by an entity filter.
        """
        stmt = select(audit_logs)
        if table_name is not None:
            stmt = stmt.where(audit_logs.c.table_name == table_name)
        if subject_id is not None:
            stmt = stmt.where(audit_logs.c.user_id == subject_id)
        if entity_id is not None:
            # Keys are sorted and json.dumps separates with ", " / ": ", so the
            # id appears either mid-object or as the last key.
            needle = f'"id": {int(entity_id)}'
            stmt = stmt.where(
                audit_logs.c.new_values.contains(needle + ",", autoescape=True)
                | audit_logs.c.new_values.contains(needle + "}", autoescape=True)
            )
        stmt = stmt.order_by(audit_logs.c.id.desc()).limit(max(page_size, 0))
        rows = self._conn.execute(stmt).fetchall()
        return [_row_to_record(r) for r in rows]

    def for_subject(self, subject_id: int, page_size: int = SCOPED_PAGE_SIZE) -> list[AuditRecord]:
        """Records of actions performed by the given subject."""
        return self.query(subject_id=subject_id, page_size=page_size)

    def for_entity(self, table_name: str, entity_id: int, page_size: int = SCOPED_PAGE_SIZE) -> list[AuditRecord]:
        """Records whose new state describes the given entity of table_name."""
        return self.query(table_name=table_name, entity_id=entity_id, page_size=page_size)

    def count(self) -> int:
        return self._conn.execute(select(func.count()).select_from(audit_logs)).scalar() or 0


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_record(row) -> AuditRecord:
    return AuditRecord(
        id=row.id,
        table_name=row.table_name,
        operation=AuditOperation(row.operation),
        user_id=row.user_id,
        username=row.username,
        old_values=_load(row.old_values),
        new_values=_load(row.new_values),
        timestamp=row.timestamp,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
