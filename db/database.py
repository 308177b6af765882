"""
db/database.py -- Engine ownership and the UnitOfWork transaction boundary.

Pattern: Unit of Work. A UnitOfWork holds exactly one connection and one
transaction. Every repository it exposes (subjects, rbac, content, audit) is
bound to that connection, so a mutation and the audit record describing it
commit or roll back together.

Commit is explicit. Leaving the `with` block without calling commit() rolls
back, and so does leaving it with an exception. Service code can therefore
return early after a failed permission check without having to remember to
undo anything.

A unit opened with write=True takes SQLite's write lock at BEGIN. Plain
units are deferred and read from a snapshot, so readers never queue behind
a writer.

Usage:
    db = Database("sqlite:///securecms.db")
    with db.unit_of_work(write=True) as uow:
        role_id = uow.rbac.create_role(Role(name="Editor"))
        uow.audit.record(entry)
        uow.commit()
    db.close()
"""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from audit.store import AuditRecorder
from auth.store import RbacRepository, SubjectRepository
from content.store import ContentRepository
from db.metadata import metadata

logger = logging.getLogger("securecms.db")

# Connection execution option marking a unit of work that will write.
WRITE_OPTION = "securecms_write"


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool. Foreign keys are switched on
    for the same reason.

    The driver's own BEGIN handling is disabled here; _begin() emits the
    BEGIN instead.
    """
    dbapi_conn.isolation_level = None
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _begin(conn) -> None:
    """Start the transaction, taking the write lock up front for write units.

    Two write units racing through check-then-insert are serialized: the
    second waits for the first to commit and then sees its row, instead of
    failing with "database is locked" on a stale snapshot. Read units use a
    plain BEGIN and never wait on writers.
    """
    if conn.get_execution_options().get(WRITE_OPTION):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class UnitOfWork:
    """One connection, one transaction, repositories bound to both."""

    def __init__(self, engine: Engine, write: bool = False) -> None:
        self._engine = engine
        self._write = write
        self._conn: Connection | None = None
        self._committed = False

    def __enter__(self) -> UnitOfWork:
        self._conn = self._engine.connect()
        if self._write:
            self._conn.execution_options(**{WRITE_OPTION: True})
        self._conn.begin()
        self.subjects = SubjectRepository(self._conn)
        self.rbac = RbacRepository(self._conn)
        self.content = ContentRepository(self._conn)
        self.audit = AuditRecorder(self._conn)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if not self._committed:
                self._conn.rollback()
                if exc_type is not None:
                    logger.debug("Unit of work rolled back after %s", exc_type.__name__)
        finally:
            self._conn.close()
            self._conn = None

    def commit(self) -> None:
        """Commit the transaction. Further writes in this unit are not allowed."""
        self._conn.commit()
        self._committed = True

    def rollback(self) -> None:
        self._conn.rollback()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and the schema. Hands out units of work."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # SQLite requires check_same_thread=False when used from FastAPI's
            # threadpool, where one pooled connection may serve several threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
            event.listen(self.engine, "begin", _begin)
        metadata.create_all(self.engine)

    def unit_of_work(self, write: bool = False) -> UnitOfWork:
        """Open a unit of work. Pass write=True for any unit that inserts, updates or deletes."""
        return UnitOfWork(self.engine, write=write)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()
