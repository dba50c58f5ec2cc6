"""SQLite store behind the training audit trail.

Owns the single shared connection and brings the schema up to date through
an ordered list of migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# (version, description, DDL). Applied in order; each applied version is
# recorded in schema_version.
_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (
        1,
        "audit log",
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            id              TEXT PRIMARY KEY,
            timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
            action          TEXT NOT NULL,
            status          TEXT NOT NULL DEFAULT 'success',
            tool_name       TEXT,
            tool_input_hash TEXT,
            target_id       TEXT,
            snapshot_id     TEXT,
            duration_ms     REAL,
            error_type      TEXT,
            metadata_json   TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
        CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
        CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
        """,
    ),
    (
        2,
        "model type column, per-target index",
        """
        ALTER TABLE audit_log ADD COLUMN model_type TEXT;
        CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_id);
        """,
    ),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]

_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


class DatabaseError(Exception):
    """Raised when the audit database is used before it is opened."""


class AuditDatabase:
    """Connection manager for the audit trail database.

    ``db_path`` is a file path (``~`` expanded, parent directories created)
    or ``":memory:"``.

    Usage::

        with AuditDatabase("~/.facehealth/audit.db") as db:
            db.connection.execute("SELECT COUNT(*) FROM audit_log")
    """

    def __init__(self, db_path: str = MEMORY) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("Audit database is not open; call initialize() first")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and migrate the schema. Safe to call twice."""
        if self._conn is not None:
            return

        location = self._db_path
        if location != MEMORY:
            path = Path(location).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            location = str(path)

        # Shared by tool handlers and training worker threads.
        conn = sqlite3.connect(location, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        self._conn = conn

        self._migrate()
        logger.info("Audit database ready: %s", self._db_path)

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_VERSION_TABLE)
        current = self.get_schema_version()

        for version, description, ddl in _MIGRATIONS:
            if version <= current:
                continue
            conn.executescript(ddl)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied audit schema v%d (%s)", version, description)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.debug("Audit database closed: %s", self._db_path)

    def __enter__(self) -> AuditDatabase:
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
