"""MCP tools for training, evaluating and serving face-feature models.

Every tool returns a JSON string with a ``status`` field. Training errors
become ``{"status": "error", "error": <kind>, "target_id": ..., ...}``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from facehealth.domains.face_health.domain_logic.errors import ModelTrainerError
from facehealth.domains.face_health.domain_logic.models import ModelType
from facehealth.domains.face_health.domain_logic.targets import (
    BUILTIN_TARGETS,
    SLEEP_SCORE,
    sleep_score_status,
)

if TYPE_CHECKING:
    from facehealth.core.audit.logger import AuditLogger
    from facehealth.domains.face_health.connectors import CaptureSource
    from facehealth.domains.face_health.domain_logic.trainer import FaceModelTrainer

logger = logging.getLogger(__name__)


def _error(exc: ModelTrainerError) -> str:
    return json.dumps({"status": "error", **exc.to_dict()})


def _parse_model_type(value: str) -> ModelType | None:
    """Empty string selects the configured default (returned as None)."""
    if not value:
        return None
    return ModelType(value.strip().lower())


def _invalid_model_type(value: str) -> str:
    return json.dumps({
        "status": "error",
        "error": "invalid_model_type",
        "message": f"Unknown model type {value!r}; use 'linear' or 'forest'.",
    })


def _audit_tool_call(
    audit_logger: AuditLogger | None,
    tool_name: str,
    tool_input: dict,
    start_time: float,
    *,
    target_id: str | None = None,
    error_type: str | None = None,
    metadata: dict | None = None,
) -> None:
    if audit_logger is None:
        return
    audit_logger.log_tool_call(
        tool_name=tool_name,
        tool_input=tool_input,
        target_id=target_id,
        duration_ms=(time.monotonic() - start_time) * 1000,
        status="failure" if error_type else "success",
        error_type=error_type,
        metadata=metadata,
    )


def register_model_tools(
    mcp: FastMCP,
    trainer: FaceModelTrainer,
    capture_source: CaptureSource,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register model training and prediction tools on the MCP server."""

    @mcp.tool
    async def train_face_model(
        ctx: Context,
        target_id: str,
        model_type: str = "",
    ) -> str:
        """Train a model predicting a health metric from facial features.

        Captures are grouped into one sample per day, the model is scored by
        leave-one-day-out cross-validation, then fitted on all days and saved.

        Args:
            target_id: 'sleepScore', 'hrv', 'restingHR', or any health field name.
            model_type: 'linear' or 'forest' (default: configured default).
        """
        start_time = time.monotonic()
        tool_input = {"target_id": target_id, "model_type": model_type}
        try:
            family = _parse_model_type(model_type)
        except ValueError:
            _audit_tool_call(
                audit_logger, "train_face_model", tool_input, start_time,
                target_id=target_id, error_type="invalid_model_type",
            )
            return _invalid_model_type(model_type)

        captures = await capture_source.load_captures()
        try:
            result = await trainer.train(target_id, captures, family)
        except ModelTrainerError as exc:
            _audit_tool_call(
                audit_logger, "train_face_model", tool_input, start_time,
                target_id=target_id, error_type=exc.kind,
            )
            return _error(exc)

        _audit_tool_call(
            audit_logger, "train_face_model", tool_input, start_time,
            target_id=target_id, metadata={"model_type": result.model_type.value},
        )
        return json.dumps({
            "status": "trained",
            "data_source": capture_source.data_source,
            **result.to_dict(),
        })

    @mcp.tool
    async def retrain_all_face_models(ctx: Context) -> str:
        """Retrain every saved model on the current captures, keeping each model's type."""
        start_time = time.monotonic()
        captures = await capture_source.load_captures()
        outcomes = await trainer.retrain_all(captures)

        results = {}
        for target_id, outcome in outcomes.items():
            if isinstance(outcome, ModelTrainerError):
                results[target_id] = {"status": "error", **outcome.to_dict()}
            else:
                results[target_id] = {"status": "trained", **outcome.to_dict()}

        retrained = sum(1 for r in results.values() if r["status"] == "trained")
        failed = len(results) - retrained
        _audit_tool_call(
            audit_logger, "retrain_all_face_models", {}, start_time,
            metadata={"retrained": retrained, "failed": failed},
        )
        return json.dumps({
            "status": "ok" if results else "no_models",
            "retrained": retrained,
            "failed": failed,
            "results": results,
            "duration_ms": round((time.monotonic() - start_time) * 1000, 1),
        })

    @mcp.tool
    async def face_model_cross_validation(
        ctx: Context,
        target_id: str,
        model_type: str = "",
        include_folds: bool = False,
    ) -> str:
        """Evaluate a model type by leave-one-day-out cross-validation without saving.

        Args:
            target_id: Health metric to evaluate.
            model_type: 'linear' or 'forest' (default: configured default).
            include_folds: Include every held-out day's actual and predicted value.
        """
        start_time = time.monotonic()
        tool_input = {"target_id": target_id, "model_type": model_type}
        try:
            family = _parse_model_type(model_type)
        except ValueError:
            _audit_tool_call(
                audit_logger, "face_model_cross_validation", tool_input, start_time,
                target_id=target_id, error_type="invalid_model_type",
            )
            return _invalid_model_type(model_type)

        captures = await capture_source.load_captures()
        try:
            cv = await trainer.cross_validate(target_id, captures, family)
        except ModelTrainerError as exc:
            _audit_tool_call(
                audit_logger, "face_model_cross_validation", tool_input, start_time,
                target_id=target_id, error_type=exc.kind,
            )
            return _error(exc)

        _audit_tool_call(
            audit_logger, "face_model_cross_validation", tool_input, start_time,
            target_id=target_id, metadata={"days": cv.sample_count},
        )
        report = cv.to_dict()
        if not include_folds:
            report.pop("folds")
        return json.dumps({"status": "ok", "target_id": target_id, **report})

    @mcp.tool
    async def predict_from_features(
        ctx: Context,
        target_id: str,
        features: list[float],
    ) -> str:
        """Predict a health metric from one facial feature vector using the saved model.

        Args:
            target_id: Health metric whose model to use.
            features: Feature vector in the reference order (24 values).
        """
        start_time = time.monotonic()
        prediction = trainer.predict(target_id, features)
        _audit_tool_call(
            audit_logger,
            "predict_from_features",
            {"target_id": target_id, "features": features},
            start_time,
            target_id=target_id,
            error_type="no_model" if prediction is None else None,
        )
        if prediction is None:
            return json.dumps({
                "status": "no_model",
                "target_id": target_id,
                "message": "No trained model for this target. Call train_face_model first.",
            })

        metadata = trainer.store.load_metadata(target_id)
        payload = {
            "status": "ok",
            "target_id": target_id,
            "prediction": round(prediction, 4),
            "model_type": metadata.model_type.value if metadata else None,
            "correlation": round(metadata.correlation, 4) if metadata else None,
        }
        if target_id == SLEEP_SCORE:
            payload["sleep_status"] = sleep_score_status(prediction)
        return json.dumps(payload)

    @mcp.tool
    async def face_model_status(
        ctx: Context,
        target_id: str = "",
    ) -> str:
        """Show saved models and how much training data is available.

        Args:
            target_id: One target to inspect; empty lists the built-in and saved targets.
        """
        captures = await capture_source.load_captures()
        if target_id:
            target_ids = [target_id]
        else:
            target_ids = list(dict.fromkeys([*BUILTIN_TARGETS, *trainer.store.list_target_ids()]))

        models = []
        for tid in target_ids:
            status = trainer.model_status(tid)
            status["available_days"] = trainer.day_count(tid, captures)
            status["available_captures"] = trainer.capture_count(tid, captures)
            status["ready_to_train"] = status["available_days"] >= trainer.options.min_days
            models.append(status)

        return json.dumps({
            "status": "ok",
            "data_source": capture_source.data_source,
            "min_training_days": trainer.options.min_days,
            "models": models,
        }, indent=2)

    @mcp.tool
    async def face_model_feature_importance(
        ctx: Context,
        target_id: str,
        top_n: int = 10,
    ) -> str:
        """Rank the facial features that drive a saved model.

        Args:
            target_id: Health metric whose model to inspect.
            top_n: Number of features to return (default: 10).
        """
        start_time = time.monotonic()
        report = trainer.feature_importance(target_id)
        _audit_tool_call(
            audit_logger,
            "face_model_feature_importance",
            {"target_id": target_id, "top_n": top_n},
            start_time,
            target_id=target_id,
            error_type="no_model" if report is None else None,
        )
        if report is None:
            return json.dumps({
                "status": "no_model",
                "target_id": target_id,
                "message": "No trained model for this target.",
            })
        return json.dumps({
            "status": "ok",
            "target_id": target_id,
            "features": [
                {"feature": name, "importance": round(value, 4)}
                for name, value in report[:max(top_n, 0)]
            ],
        })

    @mcp.tool
    async def delete_face_model(
        ctx: Context,
        target_id: str,
    ) -> str:
        """Delete the saved model for one target.

        Args:
            target_id: Health metric whose model to delete.
        """
        if not trainer.store.delete(target_id):
            return json.dumps({
                "status": "not_found",
                "target_id": target_id,
                "message": "No saved model for this target.",
            })
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_face_model", target_id=target_id, count=1
            )
        return json.dumps({"status": "deleted", "target_id": target_id})

    @mcp.tool
    async def delete_all_face_models(
        ctx: Context,
        confirm: str = "",
    ) -> str:
        """Permanently delete ALL saved models. Snapshots are kept.

        Args:
            confirm: Must be exactly 'DELETE_ALL' to proceed. Safety gate.
        """
        if confirm != "DELETE_ALL":
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To delete all models, call this tool with "
                    "confirm='DELETE_ALL'. This action cannot be undone."
                ),
            })

        count = trainer.store.delete_all()
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_all_face_models",
                count=count,
                metadata={"confirmed": True},
            )
        return json.dumps({
            "status": "all_deleted",
            "models_deleted": count,
            "message": "All saved models have been permanently deleted.",
        })
