"""SQLite link store for panel-link persistence."""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any, List
from datetime import datetime, UTC
from contextlib import contextmanager

from ..errors import StorageFailure
from ..schemas import (
    LinkedResource, VerificationChallenge, Credential, TelemetrySample, LinkStatus,
)

TELEMETRY_HISTORY_LIMIT = 100


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC timestamp so stored values compare lexicographically."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class LinkStore:
    """SQLite store for linked resources, verification tokens, telemetry and credentials.

    The vault is applied at this boundary: API keys go in and come out as
    plaintext, but only ciphertext is written to disk.
    """

    def __init__(self, db_path: Path, vault):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            vault: CredentialVault used for the credentials table
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.vault = vault
        self._init_schema()

    def _init_schema(self):
        """Create every table that does not exist yet."""
        from .schema_version import check_schema_version, set_schema_version, SCHEMA_VERSION

        with self._get_connection() as conn:
            cursor = conn.cursor()

            # Linked resources (resources-by-user)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS linked_resources (
                    user_id TEXT NOT NULL,
                    resource_id TEXT NOT NULL,
                    resource_name TEXT,
                    origin_context TEXT,  -- JSON
                    verified INTEGER NOT NULL DEFAULT 0,
                    verified_at TEXT,
                    last_active TEXT,
                    status TEXT NOT NULL DEFAULT 'linked',
                    PRIMARY KEY (user_id, resource_id)
                )
            """)

            # Verification tokens
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS verification_tokens (
                    token TEXT PRIMARY KEY,
                    code TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    resource_id TEXT NOT NULL,
                    issued_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    used INTEGER NOT NULL DEFAULT 0,
                    used_at TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_verification_tokens_pair
                ON verification_tokens (user_id, resource_id)
            """)

            # Telemetry history (capped per resource)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS telemetry (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    resource_id TEXT NOT NULL,
                    cpu REAL NOT NULL,
                    memory_bytes INTEGER NOT NULL,
                    disk_bytes INTEGER NOT NULL,
                    uptime_ms INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_telemetry_resource
                ON telemetry (resource_id, id)
            """)

            # Credentials (ciphertext only)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS credentials (
                    user_id TEXT PRIMARY KEY,
                    encrypted_api_key TEXT NOT NULL,
                    panel_url TEXT,
                    verified_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.commit()

        if not check_schema_version(self):
            set_schema_version(self, SCHEMA_VERSION)

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        except sqlite3.Error as e:
            raise StorageFailure(f"Database unavailable: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Linked resources
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert_resource_sql(cursor: sqlite3.Cursor, resource: LinkedResource) -> None:
        cursor.execute("""
            INSERT INTO linked_resources
            (user_id, resource_id, resource_name, origin_context, verified,
             verified_at, last_active, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, resource_id) DO UPDATE SET
                resource_name = COALESCE(excluded.resource_name, linked_resources.resource_name),
                origin_context = COALESCE(excluded.origin_context, linked_resources.origin_context),
                verified = excluded.verified,
                verified_at = COALESCE(excluded.verified_at, linked_resources.verified_at),
                last_active = excluded.last_active,
                status = excluded.status
        """, (
            resource.user_id,
            resource.resource_id,
            resource.resource_name,
            json.dumps(resource.origin_context) if resource.origin_context else None,
            1 if resource.verified else 0,
            _ts(resource.verified_at),
            _ts(resource.last_active),
            resource.status.value,
        ))

    def upsert_resource(self, resource: LinkedResource) -> None:
        """Insert or merge a linked resource.

        Raises:
            ValueError: If the resource is not verified
        """
        if not resource.verified:
            raise ValueError("Only verified resources can be stored")
        with self._get_connection() as conn:
            cursor = conn.cursor()
            self._upsert_resource_sql(cursor, resource)
            conn.commit()

    def remove_resource(self, user_id: str, resource_id: str) -> bool:
        """Delete a link. Returns True if a row was removed."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM linked_resources WHERE user_id = ? AND resource_id = ?",
                (user_id, resource_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_resource(self, user_id: str, resource_id: str) -> Optional[LinkedResource]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM linked_resources WHERE user_id = ? AND resource_id = ?",
                (user_id, resource_id),
            )
            row = cursor.fetchone()
            return self._row_to_resource(row) if row else None

    def list_resources_for_user(self, user_id: str) -> List[LinkedResource]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM linked_resources
                WHERE user_id = ?
                ORDER BY verified_at ASC
            """, (user_id,))
            return [self._row_to_resource(row) for row in cursor.fetchall()]

    def list_all_linked_resources(self) -> List[LinkedResource]:
        """All links across users (admin/report view)."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM linked_resources ORDER BY user_id, verified_at")
            return [self._row_to_resource(row) for row in cursor.fetchall()]

    def touch_resource(self, user_id: str, resource_id: str,
                       now: Optional[datetime] = None) -> bool:
        """Update ``last_active``. Returns False if the link does not exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE linked_resources SET last_active = ?
                WHERE user_id = ? AND resource_id = ?
            """, (_ts(now or datetime.now(UTC)), user_id, resource_id))
            conn.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_resource(row: sqlite3.Row) -> LinkedResource:
        return LinkedResource(
            user_id=row["user_id"],
            resource_id=row["resource_id"],
            resource_name=row["resource_name"],
            origin_context=json.loads(row["origin_context"]) if row["origin_context"] else {},
            verified=bool(row["verified"]),
            verified_at=_dt(row["verified_at"]),
            last_active=_dt(row["last_active"]),
            status=LinkStatus(row["status"]),
        )

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def issue_token(self, challenge: VerificationChallenge) -> None:
        """Persist a freshly issued challenge."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO verification_tokens
                (token, code, user_id, resource_id, issued_at, expires_at, used)
                VALUES (?, ?, ?, ?, ?, ?, 0)
            """, (
                challenge.token, challenge.code, challenge.user_id, challenge.resource_id,
                _ts(challenge.issued_at), _ts(challenge.expires_at),
            ))
            conn.commit()

    def get_challenge(self, token: str) -> Optional[VerificationChallenge]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM verification_tokens WHERE token = ?", (token,))
            row = cursor.fetchone()
            return self._row_to_challenge(row) if row else None

    def list_challenges(self, user_id: str, resource_id: str) -> List[VerificationChallenge]:
        """Challenges for a (user, resource) pair, newest first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM verification_tokens
                WHERE user_id = ? AND resource_id = ?
                ORDER BY issued_at DESC, rowid DESC
            """, (user_id, resource_id))
            return [self._row_to_challenge(row) for row in cursor.fetchall()]

    def consume_token(self, token: str, resource: LinkedResource,
                      now: Optional[datetime] = None) -> bool:
        """Mark a challenge used and upsert the linked resource in one transaction.

        Only one caller can move ``used`` from 0 to 1; every other caller gets
        False and nothing is written. Older challenges still open for the same
        pair are retired with it. A storage error rolls back every write.
        """
        if not resource.verified:
            raise ValueError("Only verified resources can be stored")
        now_ts = _ts(now or datetime.now(UTC))
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("""
                UPDATE verification_tokens SET used = 1, used_at = ?
                WHERE token = ? AND user_id = ? AND resource_id = ?
                  AND used = 0 AND expires_at > ?
            """, (now_ts, token, resource.user_id, resource.resource_id, now_ts))
            if cursor.rowcount != 1:
                conn.rollback()
                return False
            cursor.execute("""
                UPDATE verification_tokens SET used = 1, used_at = ?
                WHERE user_id = ? AND resource_id = ? AND used = 0
            """, (now_ts, resource.user_id, resource.resource_id))
            self._upsert_resource_sql(cursor, resource)
            conn.commit()
            return True

    @staticmethod
    def _row_to_challenge(row: sqlite3.Row) -> VerificationChallenge:
        return VerificationChallenge(
            token=row["token"],
            code=row["code"],
            user_id=row["user_id"],
            resource_id=row["resource_id"],
            issued_at=_dt(row["issued_at"]),
            expires_at=_dt(row["expires_at"]),
            used=bool(row["used"]),
        )

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def append_telemetry(self, sample: TelemetrySample,
                         limit: int = TELEMETRY_HISTORY_LIMIT) -> None:
        """Append a sample and drop the oldest beyond ``limit``.

        Samples are kept in append order; callers supply increasing timestamps.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO telemetry
                (resource_id, cpu, memory_bytes, disk_bytes, uptime_ms, state, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                sample.resource_id, sample.cpu, sample.memory_bytes, sample.disk_bytes,
                sample.uptime_ms, sample.state, _ts(sample.timestamp),
            ))
            cursor.execute("""
                DELETE FROM telemetry
                WHERE resource_id = ? AND id NOT IN (
                    SELECT id FROM telemetry WHERE resource_id = ?
                    ORDER BY id DESC LIMIT ?
                )
            """, (sample.resource_id, sample.resource_id, limit))
            conn.commit()

    def get_telemetry(self, resource_id: str, limit: Optional[int] = None) -> List[TelemetrySample]:
        """Stored samples for a resource, oldest first (optionally only the newest ``limit``)."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM telemetry WHERE resource_id = ?
                ORDER BY id DESC LIMIT ?
            """, (resource_id, limit if limit is not None else -1))
            rows = list(reversed(cursor.fetchall()))
            return [
                TelemetrySample(
                    resource_id=row["resource_id"],
                    cpu=row["cpu"],
                    memory_bytes=row["memory_bytes"],
                    disk_bytes=row["disk_bytes"],
                    uptime_ms=row["uptime_ms"],
                    state=row["state"],
                    timestamp=_dt(row["timestamp"]),
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def save_credential(self, user_id: str, api_key: str, panel_url: Optional[str],
                        verified_at: Optional[datetime] = None) -> None:
        """Encrypt and store a user's API key, replacing any previous one."""
        if not user_id or not user_id.strip():
            raise ValueError("user_id cannot be empty")
        if not api_key:
            raise ValueError("api_key cannot be empty")

        encrypted = self.vault.encrypt(api_key)
        now = datetime.now(UTC)
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO credentials
                (user_id, encrypted_api_key, panel_url, verified_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """, (user_id, encrypted, panel_url, _ts(verified_at or now), _ts(now)))
            conn.commit()

    def get_credential(self, user_id: str) -> Optional[Credential]:
        """Load and decrypt a user's credential.

        Raises:
            CorruptCredential: If the stored record cannot be decrypted
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM credentials WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
        if not row:
            return None
        return Credential(
            user_id=row["user_id"],
            api_key=self.vault.decrypt(row["encrypted_api_key"]),
            panel_url=row["panel_url"],
            verified_at=_dt(row["verified_at"]),
        )

    def get_credential_info(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Credential metadata without decrypting the key."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT user_id, panel_url, verified_at, updated_at FROM credentials WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return {
                "user_id": row["user_id"],
                "panel_url": row["panel_url"],
                "verified_at": row["verified_at"],
                "updated_at": row["updated_at"],
            }

    def remove_credential(self, user_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM credentials WHERE user_id = ?", (user_id,))
            conn.commit()
            return cursor.rowcount > 0
