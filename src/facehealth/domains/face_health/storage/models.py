"""Records persisted alongside trained models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from facehealth.domains.face_health.domain_logic.models import ModelType, TrainedModel


@dataclass
class ModelMetadata:
    """Quality and provenance of one persisted model.

    ``correlation`` is always the leave-one-day-out cross-validation r,
    never an in-sample fit statistic.
    """

    target_id: str
    correlation: float
    trained_at: datetime
    feature_count: int
    model_type: ModelType = ModelType.LINEAR
    is_cross_validated: bool = True
    day_count: int | None = None
    mae: float | None = None
    rmse: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "correlation": self.correlation,
            "trained_at": self.trained_at.isoformat(),
            "feature_count": self.feature_count,
            "model_type": self.model_type.value,
            "is_cross_validated": self.is_cross_validated,
            "day_count": self.day_count,
            "mae": self.mae,
            "rmse": self.rmse,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelMetadata:
        """Build from a stored document.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing
                or malformed.
        """
        return cls(
            target_id=str(data["target_id"]),
            correlation=float(data["correlation"]),
            trained_at=datetime.fromisoformat(data["trained_at"]),
            feature_count=int(data["feature_count"]),
            model_type=ModelType(data.get("model_type", ModelType.LINEAR.value)),
            is_cross_validated=bool(data.get("is_cross_validated", True)),
            day_count=_optional_int(data.get("day_count")),
            mae=_optional_float(data.get("mae")),
            rmse=_optional_float(data.get("rmse")),
        )


@dataclass
class LoadedModel:
    """A model read back from the store with its declared family."""

    model: TrainedModel
    model_type: ModelType
    metadata: ModelMetadata | None = None


@dataclass
class SnapshotManifest:
    """A named, timestamped copy of several targets' models."""

    id: str  # folder name, e.g. '2026-02-01_083000'
    name: str
    created_at: datetime
    target_ids: list[str] = field(default_factory=list)

    @property
    def target_count(self) -> int:
        return len(self.target_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "target_ids": list(self.target_ids),
        }


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
