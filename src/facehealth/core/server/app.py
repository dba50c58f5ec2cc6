"""Face Health MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
import sqlite3

from fastmcp import FastMCP

from facehealth.core.audit.logger import AuditLogger
from facehealth.core.config.settings import Settings, get_settings
from facehealth.core.storage.database import AuditDatabase
from facehealth.core.storage.encryption import DocumentCodec, EncryptionError
from facehealth.domains.face_health.connectors import CaptureSource
from facehealth.domains.face_health.connectors.json_directory import JsonCaptureDirectory
from facehealth.domains.face_health.connectors.providers import MockCaptureSource
from facehealth.domains.face_health.domain_logic.cross_validation import ForestOptions
from facehealth.domains.face_health.domain_logic.models import DayTargetPolicy, ModelType
from facehealth.domains.face_health.domain_logic.trainer import FaceModelTrainer, TrainerOptions
from facehealth.domains.face_health.storage.model_store import ModelStore
from facehealth.domains.face_health.tools.model_tools import register_model_tools
from facehealth.domains.face_health.tools.snapshot_tools import register_snapshot_tools

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def trainer_options(settings: Settings) -> TrainerOptions:
    return TrainerOptions(
        default_model_type=ModelType(settings.default_model_type),
        day_policy=DayTargetPolicy(settings.day_target_policy),
        forest=ForestOptions(
            tree_count=settings.forest_tree_count,
            max_depth=settings.forest_max_depth,
        ),
        min_days=settings.min_training_days,
    )


def create_app(
    *,
    capture_source_override: CaptureSource | None = None,
    model_store_override: ModelStore | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the Face Health MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the model store (optionally encrypted at rest)
    3. Opens the audit trail
    4. Selects the capture source (JSON directory, or mock captures)
    5. Registers model and snapshot tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "Face Health Trainer",
        instructions=(
            "Personal face-to-health model trainer. Learns how facial features "
            "relate to sleep score, HRV, resting heart rate or any other health "
            "metric, reports leave-one-day-out accuracy, and predicts from new "
            "feature vectors. All data stays on this device."
        ),
    )

    # --- Model store ---
    if model_store_override is not None:
        store = model_store_override
    else:
        try:
            codec = DocumentCodec(settings.encryption_key or None)
        except EncryptionError as exc:
            logger.error("Invalid ENCRYPTION_KEY: %s", exc)
            logger.warning("Continuing with plaintext model files")
            codec = DocumentCodec()
        if not codec.encrypted:
            logger.info("No ENCRYPTION_KEY configured; models are stored as plain JSON")
        store = ModelStore(settings.models_dir, settings.snapshots_dir, codec=codec)
    logger.info("Model store: %s", store.models_dir)

    # --- Audit trail ---
    if audit_logger_override is not None:
        audit_logger: AuditLogger | None = audit_logger_override
    else:
        try:
            audit_db = AuditDatabase(settings.audit_db_path)
            audit_db.initialize()
            audit_logger = AuditLogger(audit_db)
            logger.info(
                "Audit trail initialized: %s (schema v%d)",
                settings.audit_db_path,
                audit_db.get_schema_version(),
            )
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to initialize audit trail: %s", exc)
            logger.warning("Continuing without audit logging")
            audit_logger = None

    # --- Capture source ---
    if capture_source_override is not None:
        capture_source = capture_source_override
    elif settings.captures_dir:
        capture_source = JsonCaptureDirectory(settings.captures_dir)
        logger.info("Reading captures from %s", settings.captures_dir)
    else:
        capture_source = MockCaptureSource()
        logger.info("Using mock capture source")

    trainer = FaceModelTrainer(store, trainer_options(settings), audit_logger=audit_logger)

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "Face Health Trainer",
            "version": VERSION,
            "data_source": capture_source.data_source,
            "models_stored": len(store.list_target_ids()),
            "snapshots_stored": len(store.list_snapshots()),
            "default_model_type": trainer.options.default_model_type.value,
            "audit_enabled": audit_logger is not None,
        }

    register_model_tools(server, trainer, capture_source, audit_logger)
    logger.info("Model tools registered")

    register_snapshot_tools(server, store, audit_logger)
    logger.info("Snapshot tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when accessed (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
