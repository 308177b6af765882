"""
audit/models.py -- Audit entry and record dataclasses.

AuditEntry is what a service hands to AuditRecorder.record(); AuditRecord is
what comes back from a query. Both are plain data. Entries are frozen so a
service cannot mutate one after passing it on.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class AuditOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class AuditActor:
    """Who performed an operation, and from where.

    subject_id is None for system actions (seeding, CLI maintenance).
    username is a snapshot taken at the time of the action; it is not
    updated if the subject is renamed later.
    """

    subject_id: int | None
    username: str | None
    ip_address: str | None = None
    user_agent: str | None = None


SYSTEM_ACTOR = AuditActor(subject_id=None, username="system")


@dataclass(frozen=True)
class AuditEntry:
    """One create, update or delete on a governed entity.

    old_values is None for creates; new_values is None for deletes.
    """

    table_name: str
    operation: AuditOperation
    actor: AuditActor
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


@dataclass
class AuditRecord:
    id: int
    table_name: str
    operation: AuditOperation
    user_id: int | None
    username: str | None
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    timestamp: str
    ip_address: str | None = None
    user_agent: str | None = None


def snapshot(entity: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Return a dataclass entity as a dict for audit serialization.

    Fields named in exclude are dropped (password hashes never enter the
    audit log).
    """
    data = dataclasses.asdict(entity)
    for name in exclude:
        data.pop(name, None)
    return data
