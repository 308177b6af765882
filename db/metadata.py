"""
db/metadata.py -- Shared SQLAlchemy MetaData and timestamp helper.

Every store module (auth/store.py, audit/store.py, content/store.py) defines
its tables on this one MetaData object so a single create_all() builds the
whole schema and so governed-entity writes and their audit records can share
one connection and one transaction.

Layer rule: no imports from other project packages.
"""

from datetime import datetime, timezone

from sqlalchemy import MetaData

metadata = MetaData()


def now_iso() -> str:
    """Current UTC time as ISO 8601 with a fixed microsecond field."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")
