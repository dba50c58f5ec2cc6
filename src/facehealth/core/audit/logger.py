"""Audit logger for training runs, deletions and snapshot operations.

The trail is PHI-free: tool inputs are stored only as a SHA-256 of their
canonical JSON, and training events record model quality figures, never
feature vectors or health readings.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from facehealth.core.storage.database import AuditDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'model_training' | 'data_delete' | 'snapshot_*'
    tool_name: str = ""
    tool_input_hash: str = ""
    target_id: str | None = None
    model_type: str | None = None        # 'linear' | 'forest'
    snapshot_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately and never raise; a failed write is
    logged and reported by an empty event id.

    Usage::

        audit = AuditLogger(audit_db)
        audit.log_training(target_id="sleepScore", model_type="forest",
                           day_count=21, correlation=0.62)
    """

    def __init__(self, database: AuditDatabase) -> None:
        self._db = database
        self._write_lock = threading.Lock()

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID ("" on failure)."""
        row = {
            "id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": event.action,
            "status": event.status,
            "tool_name": event.tool_name or None,
            "tool_input_hash": event.tool_input_hash or None,
            "target_id": event.target_id,
            "model_type": event.model_type,
            "snapshot_id": event.snapshot_id,
            "duration_ms": event.duration_ms,
            "error_type": event.error_type,
            "metadata_json": (
                json.dumps(event.metadata, separators=(",", ":")) if event.metadata else None
            ),
        }
        sql = "INSERT INTO audit_log ({}) VALUES ({})".format(
            ", ".join(row), ", ".join("?" * len(row))
        )

        try:
            with self._write_lock:
                conn = self._db.connection
                conn.execute(sql, tuple(row.values()))
                conn.commit()
        except Exception:
            logger.exception("Audit write failed for action %s; event dropped", event.action)
            return ""
        return row["id"]

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        target_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a tool invocation. ``tool_input`` is hashed, never stored raw."""
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            target_id=target_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_training(
        self,
        *,
        target_id: str,
        model_type: str,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        day_count: int | None = None,
        correlation: float | None = None,
    ) -> str:
        metadata: dict[str, Any] = {}
        if day_count is not None:
            metadata["day_count"] = day_count
        if correlation is not None:
            metadata["correlation"] = round(correlation, 4)
        return self.log_event(AuditEvent(
            action="model_training",
            target_id=target_id,
            model_type=model_type,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata,
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        target_id: str | None = None,
        snapshot_id: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log deletion of models or a snapshot."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            target_id=target_id,
            snapshot_id=snapshot_id,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    def log_snapshot(
        self,
        action: str,
        *,
        snapshot_id: str,
        tool_name: str = "",
        target_count: int = 0,
    ) -> str:
        """Log a snapshot save or restore (``action`` is 'save' or 'restore')."""
        return self.log_event(AuditEvent(
            action=f"snapshot_{action}",
            tool_name=tool_name,
            snapshot_id=snapshot_id,
            metadata={"target_count": target_count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        target_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Return matching events as dicts, newest first.

        ``since`` is an ISO 8601 lower bound on the event timestamp.
        """
        where, params = _filters(action=action, target_id=target_id, since=since)
        rows = self._db.connection.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None) -> int:
        where, params = _filters(action=action)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]


_FILTER_SQL = {
    "action": "action = ?",
    "target_id": "target_id = ?",
    "since": "timestamp >= ?",
}


def _filters(**values: str | None) -> tuple[str, list[str]]:
    """WHERE clause and parameters for the non-empty filters."""
    used = {name: value for name, value in values.items() if value}
    if not used:
        return "", []
    clause = " AND ".join(_FILTER_SQL[name] for name in used)
    return f" WHERE {clause}", list(used.values())

