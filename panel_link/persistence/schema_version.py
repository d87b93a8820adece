"""Link store schema version bookkeeping."""

import logging
from typing import Optional, TYPE_CHECKING
from datetime import datetime, UTC

from ..errors import StorageFailure

if TYPE_CHECKING:
    from .database import LinkStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"

_CREATE_VERSION_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version TEXT PRIMARY KEY,
        applied_at TEXT NOT NULL
    )
"""


def get_current_schema_version(store: "LinkStore") -> Optional[str]:
    """Most recently applied version, or None for a fresh or unreadable database."""
    try:
        with store._get_connection() as conn:
            conn.execute(_CREATE_VERSION_TABLE)
            row = conn.execute(
                "SELECT version FROM schema_version ORDER BY applied_at DESC LIMIT 1"
            ).fetchone()
    except StorageFailure:
        return None
    return row[0] if row else None


def set_schema_version(store: "LinkStore", version: str) -> None:
    with store._get_connection() as conn:
        conn.execute(_CREATE_VERSION_TABLE)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (version, datetime.now(UTC).isoformat()),
        )
        conn.commit()


def check_schema_version(store: "LinkStore") -> bool:
    """True if the store is at SCHEMA_VERSION. A fresh store is stamped and passes."""
    current = get_current_schema_version(store)
    if current is None:
        set_schema_version(store, SCHEMA_VERSION)
        return True
    if current != SCHEMA_VERSION:
        logger.warning("Link store schema is %s, expected %s", current, SCHEMA_VERSION)
        return False
    return True
