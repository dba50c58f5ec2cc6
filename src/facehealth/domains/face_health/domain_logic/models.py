"""Face-to-health data model: captures, day records, and trained models.

Trained models are a closed sum type (``LinearModel | ForestModel``) and
decision trees are ``Leaf | Split``. Both serialize to the tagged JSON
documents written by the model store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Union


class ModelType(str, Enum):
    """Model family selected for training and declared in metadata."""

    LINEAR = "linear"
    FOREST = "forest"

    @property
    def display_name(self) -> str:
        if self is ModelType.LINEAR:
            return "Linear Regression"
        return "Random Forest"


class DayTargetPolicy(str, Enum):
    """How a day's target is derived from several same-day captures."""

    LATEST = "latest"  # target of the chronologically last capture
    MEAN = "mean"      # mean of all the day's targets


# ---------------------------------------------------------------------------
# Training data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CaptureSample:
    """One face capture with its feature vector and health data snapshot."""

    id: str
    timestamp: datetime
    features: list[float] | None = None
    health_data: Mapping[str, str] | None = None


@dataclass(frozen=True)
class DaySample:
    """One calendar day of training data built from same-day captures."""

    day_key: date
    features: list[float]
    target: float
    representative_date: datetime  # timestamp of the day's last capture
    source_capture_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Decision trees
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Leaf:
    value: float


@dataclass(frozen=True)
class Split:
    feature_index: int
    threshold: float
    left: DecisionTree
    right: DecisionTree


DecisionTree = Union[Leaf, Split]


# ---------------------------------------------------------------------------
# Trained models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LinearModel:
    """Ridge regression model: ``bias + sum(coefficients[i] * features[i])``."""

    bias: float
    coefficients: list[float]

    @property
    def model_type(self) -> ModelType:
        return ModelType.LINEAR


@dataclass(frozen=True)
class ForestModel:
    """Bagged ensemble of regression trees with normalized feature importance."""

    trees: list[DecisionTree]
    feature_importance: list[float]

    @property
    def model_type(self) -> ModelType:
        return ModelType.FOREST


TrainedModel = Union[LinearModel, ForestModel]


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

class ModelFormatError(ValueError):
    """Raised when a serialized model document cannot be decoded."""


def tree_to_dict(tree: DecisionTree) -> dict[str, Any]:
    match tree:
        case Leaf(value=value):
            return {"leaf": value}
        case Split(feature_index=idx, threshold=threshold, left=left, right=right):
            return {
                "split": {
                    "feature_index": idx,
                    "threshold": threshold,
                    "left": tree_to_dict(left),
                    "right": tree_to_dict(right),
                }
            }
    raise TypeError(f"Not a decision tree node: {tree!r}")


def tree_from_dict(data: Any) -> DecisionTree:
    if not isinstance(data, dict):
        raise ModelFormatError(f"Tree node must be an object, got {type(data).__name__}")
    if "leaf" in data:
        return Leaf(value=_as_float(data["leaf"]))
    if "split" in data and isinstance(data["split"], dict):
        node = data["split"]
        try:
            feature_index = int(node["feature_index"])
            threshold = _as_float(node["threshold"])
            left, right = node["left"], node["right"]
        except (KeyError, TypeError, ValueError) as exc:
            raise ModelFormatError(f"Malformed split node: {exc}") from exc
        if feature_index < 0:
            raise ModelFormatError(f"Negative feature index: {feature_index}")
        return Split(
            feature_index=feature_index,
            threshold=threshold,
            left=tree_from_dict(left),
            right=tree_from_dict(right),
        )
    raise ModelFormatError(f"Unknown tree node keys: {sorted(data)}")


def model_to_dict(model: TrainedModel) -> dict[str, Any]:
    """Encode a trained model as a tagged JSON-serializable document."""
    match model:
        case LinearModel(bias=bias, coefficients=coefficients):
            return {
                "type": ModelType.LINEAR.value,
                "bias": bias,
                "coefficients": list(coefficients),
            }
        case ForestModel(trees=trees, feature_importance=importance):
            return {
                "type": ModelType.FOREST.value,
                "trees": [tree_to_dict(t) for t in trees],
                "feature_importance": list(importance),
            }
    raise TypeError(f"Not a trained model: {model!r}")


def model_from_dict(data: Any) -> TrainedModel:
    """Decode a document produced by :func:`model_to_dict`.

    Raises:
        ModelFormatError: If the document is not a valid model.
    """
    if not isinstance(data, dict):
        raise ModelFormatError("Model document must be a JSON object")
    try:
        model_type = ModelType(data.get("type"))
    except ValueError as exc:
        raise ModelFormatError(f"Unknown model type: {data.get('type')!r}") from exc

    try:
        if model_type is ModelType.LINEAR:
            return LinearModel(
                bias=_as_float(data["bias"]),
                coefficients=[_as_float(c) for c in data["coefficients"]],
            )
        trees = [tree_from_dict(t) for t in data["trees"]]
        if not trees:
            raise ModelFormatError("Forest model has no trees")
        return ForestModel(
            trees=trees,
            feature_importance=[_as_float(v) for v in data.get("feature_importance", [])],
        )
    except (KeyError, TypeError) as exc:
        raise ModelFormatError(f"Malformed {model_type.value} model: {exc}") from exc


def _as_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelFormatError(f"Expected a number, got {value!r}")
    return float(value)
