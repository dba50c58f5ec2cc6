"""Leave-one-day-out cross-validation.

Each day is predicted by a model trained on every other day, so no capture
from the held-out day influences its own prediction. The resulting
correlation is the only accuracy figure reported or stored for a model.
Fold models are discarded; the deployed model is fitted separately on all
days.
"""

from __future__ import annotations

import logging
import random
import statistics
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Sequence

import numpy as np

from facehealth.domains.face_health.domain_logic.errors import (
    InsufficientDataError,
    ModelTrainerError,
)
from facehealth.domains.face_health.domain_logic.forest import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_TREE_COUNT,
    train_random_forest,
)
from facehealth.domains.face_health.domain_logic.linear import train_linear_regression
from facehealth.domains.face_health.domain_logic.models import (
    DaySample,
    ModelType,
    TrainedModel,
)
from facehealth.domains.face_health.domain_logic.predictor import predict

logger = logging.getLogger(__name__)

MIN_TRAINING_DAYS = 7


@dataclass(frozen=True)
class ForestOptions:
    tree_count: int = DEFAULT_TREE_COUNT
    max_depth: int = DEFAULT_MAX_DEPTH


def fit_model(
    model_type: ModelType,
    features: Sequence[Sequence[float]],
    targets: Sequence[float],
    *,
    forest: ForestOptions = ForestOptions(),
    rng: random.Random | None = None,
) -> TrainedModel:
    """Train a model of the requested family."""
    match model_type:
        case ModelType.LINEAR:
            return train_linear_regression(features, targets)
        case ModelType.FOREST:
            return train_random_forest(
                features,
                targets,
                tree_count=forest.tree_count,
                max_depth=forest.max_depth,
                rng=rng,
            )
    raise ValueError(f"Unknown model type: {model_type!r}")


@dataclass(frozen=True)
class FoldPrediction:
    """Held-out prediction for one day."""

    day_key: date
    actual: float
    predicted: float
    representative_date: datetime
    source_capture_ids: list[str]
    used_fallback: bool = False  # fold model failed; predicted the training mean


@dataclass
class CrossValidationResult:
    model_type: ModelType
    folds: list[FoldPrediction] = field(default_factory=list)
    correlation: float = 0.0
    mae: float = 0.0
    rmse: float = 0.0
    mean_actual: float = 0.0

    @property
    def sample_count(self) -> int:
        return len(self.folds)

    @property
    def actuals(self) -> list[float]:
        return [f.actual for f in self.folds]

    @property
    def predictions(self) -> list[float]:
        return [f.predicted for f in self.folds]

    @property
    def strength(self) -> str:
        return correlation_strength(self.correlation)

    def to_dict(self) -> dict:
        return {
            "model_type": self.model_type.value,
            "correlation": round(self.correlation, 4),
            "strength": self.strength,
            "sample_count": self.sample_count,
            "mean_actual": round(self.mean_actual, 4),
            "mae": round(self.mae, 4),
            "rmse": round(self.rmse, 4),
            "folds": [
                {
                    "day": f.day_key.isoformat(),
                    "actual": f.actual,
                    "predicted": f.predicted,
                    "date": f.representative_date.isoformat(),
                    "capture_ids": f.source_capture_ids,
                    "used_fallback": f.used_fallback,
                }
                for f in self.folds
            ],
        }


def pearson_correlation(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """Pearson r; 0.0 for mismatched or too-short input, or zero variance."""
    if len(actual) != len(predicted) or len(actual) < 2:
        return 0.0
    try:
        r = statistics.correlation(actual, predicted)
    except statistics.StatisticsError:
        return 0.0
    return max(-1.0, min(1.0, r))


def correlation_strength(r: float) -> str:
    magnitude = abs(r)
    if magnitude >= 0.7:
        return "strong"
    if magnitude >= 0.5:
        return "moderate"
    if magnitude >= 0.3:
        return "weak"
    return "very_weak"


def leave_one_day_out(
    days: Sequence[DaySample],
    model_type: ModelType,
    *,
    forest: ForestOptions = ForestOptions(),
    rng: random.Random | None = None,
    min_days: int = MIN_TRAINING_DAYS,
) -> CrossValidationResult:
    """Run leave-one-day-out cross-validation.

    Args:
        days: Day-aggregated samples, any order.
        model_type: Model family to train in each fold.
        forest: Ensemble parameters (forest family only).
        rng: Random source for the ensemble trainer.
        min_days: Minimum number of days required.

    Raises:
        InsufficientDataError: With fewer than ``min_days`` days, before any
            fitting happens.
    """
    if min_days < 2:
        raise ValueError("min_days must be at least 2")
    if len(days) < min_days:
        raise InsufficientDataError(required=min_days, actual=len(days))

    ordered = sorted(days, key=lambda d: d.day_key)
    result = CrossValidationResult(model_type=model_type)

    for i, held_out in enumerate(ordered):
        train_x = [d.features for j, d in enumerate(ordered) if j != i]
        train_y = [d.target for j, d in enumerate(ordered) if j != i]

        used_fallback = False
        try:
            fold_model = fit_model(model_type, train_x, train_y, forest=forest, rng=rng)
            predicted = predict(fold_model, held_out.features)
        except ModelTrainerError as exc:
            logger.info(
                "Fold %s failed (%s); predicting training mean", held_out.day_key, exc.kind
            )
            predicted = statistics.fmean(train_y)
            used_fallback = True

        result.folds.append(FoldPrediction(
            day_key=held_out.day_key,
            actual=held_out.target,
            predicted=predicted,
            representative_date=held_out.representative_date,
            source_capture_ids=list(held_out.source_capture_ids),
            used_fallback=used_fallback,
        ))

    actuals = np.asarray(result.actuals)
    errors = actuals - np.asarray(result.predictions)
    n = errors.size
    result.correlation = pearson_correlation(result.actuals, result.predictions)
    result.mae = float(np.mean(np.abs(errors)))
    result.rmse = float(np.sqrt(np.mean(errors ** 2)))
    result.mean_actual = float(actuals.mean())

    logger.info(
        "LOO-CV (%s) over %d days: r=%.3f mae=%.3f rmse=%.3f",
        model_type.value, n, result.correlation, result.mae, result.rmse,
    )
    return result
