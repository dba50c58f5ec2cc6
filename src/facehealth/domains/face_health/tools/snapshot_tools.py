"""MCP tools for saving and restoring named snapshots of the trained models."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from facehealth.domains.face_health.storage.model_store import (
    ModelStore,
    ModelStoreError,
    SnapshotNotFoundError,
)

if TYPE_CHECKING:
    from facehealth.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_snapshot_tools(
    mcp: FastMCP,
    store: ModelStore,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register snapshot management tools on the MCP server."""

    @mcp.tool
    async def list_model_snapshots(ctx: Context) -> str:
        """List saved model snapshots, newest first."""
        snapshots = store.list_snapshots()
        return json.dumps({
            "status": "ok",
            "count": len(snapshots),
            "snapshots": [
                {**s.to_dict(), "target_count": s.target_count} for s in snapshots
            ],
        }, indent=2)

    @mcp.tool
    async def save_model_snapshot(
        ctx: Context,
        name: str,
        target_ids: list[str] | None = None,
    ) -> str:
        """Save a copy of the current models under a name.

        Args:
            name: Human-readable label, e.g. 'before diet change'.
            target_ids: Targets to include (default: every saved model).
        """
        ids = target_ids if target_ids is not None else store.list_target_ids()
        try:
            snapshot = store.save_snapshot(name, ids)
        except ModelStoreError as exc:
            return json.dumps({"status": "error", "error": "snapshot_failed", "message": str(exc)})

        if audit_logger is not None:
            audit_logger.log_snapshot(
                "save",
                snapshot_id=snapshot.id,
                tool_name="save_model_snapshot",
                target_count=snapshot.target_count,
            )
        return json.dumps({"status": "saved", **snapshot.to_dict()})

    @mcp.tool
    async def restore_model_snapshot(
        ctx: Context,
        snapshot_id: str,
    ) -> str:
        """Replace the current models with the ones in a snapshot.

        Only targets contained in the snapshot are overwritten.

        Args:
            snapshot_id: Snapshot id as shown by list_model_snapshots.
        """
        try:
            snapshot = store.restore_snapshot(snapshot_id)
        except SnapshotNotFoundError:
            return json.dumps({
                "status": "not_found",
                "snapshot_id": snapshot_id,
                "message": "No snapshot found with that ID.",
            })
        except ModelStoreError as exc:
            return json.dumps({"status": "error", "error": "restore_failed", "message": str(exc)})

        if audit_logger is not None:
            audit_logger.log_snapshot(
                "restore",
                snapshot_id=snapshot.id,
                tool_name="restore_model_snapshot",
                target_count=snapshot.target_count,
            )
        return json.dumps({"status": "restored", **snapshot.to_dict()})

    @mcp.tool
    async def delete_model_snapshot(
        ctx: Context,
        snapshot_id: str,
    ) -> str:
        """Delete a saved snapshot. The current models are not affected.

        Args:
            snapshot_id: Snapshot id as shown by list_model_snapshots.
        """
        if not store.delete_snapshot(snapshot_id):
            return json.dumps({
                "status": "not_found",
                "snapshot_id": snapshot_id,
                "message": "No snapshot found with that ID.",
            })
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_model_snapshot", snapshot_id=snapshot_id, count=1
            )
        logger.info("Deleted model snapshot %s", snapshot_id)
        return json.dumps({"status": "deleted", "snapshot_id": snapshot_id})
