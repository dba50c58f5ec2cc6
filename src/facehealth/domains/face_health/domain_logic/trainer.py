"""Training service: aggregate, cross-validate, fit, persist.

One training run for a target id:

1. aggregate captures into day records (configured day-target policy)
2. leave-one-day-out cross-validation, which supplies the reported r
3. fit the selected family once more on *all* days
4. save the deployed model with CV metadata

The blocking pipeline runs in a worker thread. Runs for the same target id
are serialized; different targets may train concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

from facehealth.domains.face_health.domain_logic.aggregation import (
    aggregate_by_day,
    count_days,
    count_usable_captures,
)
from facehealth.domains.face_health.domain_logic.cross_validation import (
    MIN_TRAINING_DAYS,
    CrossValidationResult,
    ForestOptions,
    correlation_strength,
    fit_model,
    leave_one_day_out,
)
from facehealth.domains.face_health.domain_logic.errors import (
    ModelTrainerError,
    TrainingFailedError,
)
from facehealth.domains.face_health.domain_logic.models import (
    CaptureSample,
    DayTargetPolicy,
    ModelType,
)
from facehealth.domains.face_health.domain_logic.predictor import (
    feature_importance_report,
    predict,
)
from facehealth.domains.face_health.domain_logic.targets import display_name, extractor_for
from facehealth.domains.face_health.storage.model_store import ModelStore, ModelStoreError
from facehealth.domains.face_health.storage.models import ModelMetadata

if TYPE_CHECKING:
    from facehealth.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainerOptions:
    """Defaults applied when a call does not name them explicitly."""

    default_model_type: ModelType = ModelType.LINEAR
    day_policy: DayTargetPolicy = DayTargetPolicy.LATEST
    forest: ForestOptions = field(default_factory=ForestOptions)
    min_days: int = MIN_TRAINING_DAYS

    def __post_init__(self) -> None:
        if self.min_days < 2:
            raise ValueError(f"min_days must be at least 2, got {self.min_days}")


@dataclass
class TrainingResult:
    target_id: str
    metadata: ModelMetadata
    cross_validation: CrossValidationResult
    capture_count: int
    duration_ms: float = 0.0

    @property
    def model_type(self) -> ModelType:
        return self.metadata.model_type

    def to_dict(self) -> dict[str, Any]:
        cv = self.cross_validation
        return {
            "target_id": self.target_id,
            "target_name": display_name(self.target_id),
            "model_type": self.model_type.value,
            "correlation": round(cv.correlation, 4),
            "strength": cv.strength,
            "mae": round(cv.mae, 4),
            "rmse": round(cv.rmse, 4),
            "day_count": cv.sample_count,
            "capture_count": self.capture_count,
            "feature_count": self.metadata.feature_count,
            "fallback_folds": sum(1 for f in cv.folds if f.used_fallback),
            "trained_at": self.metadata.trained_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
        }


class FaceModelTrainer:
    """Trains, evaluates and serves per-target face-feature models.

    Usage::

        trainer = FaceModelTrainer(store, TrainerOptions(default_model_type=ModelType.FOREST))
        result = await trainer.train("sleepScore", captures)
        score = trainer.predict("sleepScore", features)
    """

    def __init__(
        self,
        store: ModelStore,
        options: TrainerOptions | None = None,
        *,
        rng: random.Random | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._options = options or TrainerOptions()
        self._rng = rng
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def store(self) -> ModelStore:
        return self._store

    @property
    def options(self) -> TrainerOptions:
        return self._options

    def _lock_for(self, target_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(target_id, threading.Lock())

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def train(
        self,
        target_id: str,
        captures: Iterable[CaptureSample],
        model_type: ModelType | None = None,
    ) -> TrainingResult:
        """Train and persist a model for ``target_id`` off the event loop.

        Raises:
            InsufficientDataError: Fewer day records than the minimum.
            SingularMatrixError: The final linear fit was degenerate.
            TrainingFailedError: Any other failure, including persistence.
        """
        return await asyncio.to_thread(self.train_sync, target_id, list(captures), model_type)

    def train_sync(
        self,
        target_id: str,
        captures: Sequence[CaptureSample],
        model_type: ModelType | None = None,
    ) -> TrainingResult:
        """Blocking form of :meth:`train`."""
        model_type = model_type or self._options.default_model_type
        start = time.monotonic()
        with self._lock_for(target_id):
            try:
                result = self._train_locked(target_id, captures, model_type)
            except ModelTrainerError as exc:
                exc.with_target(target_id)
                logger.warning("Training %s (%s) failed: %s", target_id, model_type.value, exc)
                self._audit_training(
                    target_id, model_type, start, status="failure", error_type=exc.kind
                )
                raise
        result.duration_ms = (time.monotonic() - start) * 1000
        self._audit_training(
            target_id, model_type, start,
            day_count=result.cross_validation.sample_count,
            correlation=result.cross_validation.correlation,
        )
        return result

    def _train_locked(
        self, target_id: str, captures: Sequence[CaptureSample], model_type: ModelType
    ) -> TrainingResult:
        extractor = extractor_for(target_id)
        days = sorted(
            aggregate_by_day(captures, extractor, self._options.day_policy),
            key=lambda d: d.day_key,
        )
        cv = leave_one_day_out(
            days,
            model_type,
            forest=self._options.forest,
            rng=self._rng,
            min_days=self._options.min_days,
        )

        features = [d.features for d in days]
        model = fit_model(
            model_type,
            features,
            [d.target for d in days],
            forest=self._options.forest,
            rng=self._rng,
        )

        metadata = ModelMetadata(
            target_id=target_id,
            correlation=cv.correlation,
            trained_at=self._clock(),
            feature_count=min(len(f) for f in features),
            model_type=model_type,
            is_cross_validated=True,
            day_count=len(days),
            mae=cv.mae,
            rmse=cv.rmse,
        )
        try:
            self._store.save(target_id, model, metadata)
        except ModelStoreError as exc:
            raise TrainingFailedError(str(exc), target_id=target_id) from exc

        logger.info(
            "Trained %s model for %s on %d days (r=%.3f, %s)",
            model_type.value, target_id, len(days), cv.correlation, cv.strength,
        )
        return TrainingResult(
            target_id=target_id,
            metadata=metadata,
            cross_validation=cv,
            capture_count=count_usable_captures(captures, extractor),
        )

    async def retrain_all(
        self, captures: Iterable[CaptureSample]
    ) -> dict[str, TrainingResult | ModelTrainerError]:
        """Retrain every stored target with its stored model family.

        Failures are collected per target rather than raised, so one target
        with too little data does not stop the others.
        """
        captures = list(captures)
        outcomes: dict[str, TrainingResult | ModelTrainerError] = {}
        for target_id in self._store.list_target_ids():
            metadata = self._store.load_metadata(target_id)
            model_type = metadata.model_type if metadata else None
            try:
                outcomes[target_id] = await self.train(target_id, captures, model_type)
            except ModelTrainerError as exc:
                outcomes[target_id] = exc
        return outcomes

    async def cross_validate(
        self,
        target_id: str,
        captures: Iterable[CaptureSample],
        model_type: ModelType | None = None,
    ) -> CrossValidationResult:
        """Leave-one-day-out report without touching the stored model."""
        captures = list(captures)
        model_type = model_type or self._options.default_model_type

        def _run() -> CrossValidationResult:
            days = aggregate_by_day(captures, extractor_for(target_id), self._options.day_policy)
            try:
                return leave_one_day_out(
                    days,
                    model_type,
                    forest=self._options.forest,
                    rng=self._rng,
                    min_days=self._options.min_days,
                )
            except ModelTrainerError as exc:
                raise exc.with_target(target_id)

        return await asyncio.to_thread(_run)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def predict(self, target_id: str, features: Sequence[float]) -> float | None:
        """Prediction from the stored model, or ``None`` if there is none."""
        loaded = self._store.load(target_id)
        if loaded is None:
            return None
        return predict(loaded.model, features)

    def feature_importance(self, target_id: str) -> list[tuple[str, float]] | None:
        loaded = self._store.load(target_id)
        if loaded is None:
            return None
        return feature_importance_report(loaded.model)

    def model_status(self, target_id: str) -> dict[str, Any]:
        """Summary of the stored model for a target (no training)."""
        metadata = self._store.load_metadata(target_id)
        status: dict[str, Any] = {
            "target_id": target_id,
            "target_name": display_name(target_id),
            "has_model": self._store.load(target_id) is not None,
        }
        if metadata is not None:
            status.update(metadata.to_dict())
            status["strength"] = correlation_strength(metadata.correlation)
        return status

    def day_count(self, target_id: str, captures: Iterable[CaptureSample]) -> int:
        return count_days(captures, extractor_for(target_id))

    def capture_count(self, target_id: str, captures: Iterable[CaptureSample]) -> int:
        return count_usable_captures(captures, extractor_for(target_id))

    # ------------------------------------------------------------------

    def _audit_training(
        self,
        target_id: str,
        model_type: ModelType,
        start: float,
        *,
        status: str = "success",
        error_type: str | None = None,
        day_count: int | None = None,
        correlation: float | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_training(
            target_id=target_id,
            model_type=model_type.value,
            duration_ms=(time.monotonic() - start) * 1000,
            status=status,
            error_type=error_type,
            day_count=day_count,
            correlation=correlation,
        )
