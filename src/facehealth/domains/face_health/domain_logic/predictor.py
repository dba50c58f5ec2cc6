"""Model evaluation and feature importance for both model families.

Inference tolerates feature vectors whose length differs from the one the
model was trained on: linear models use only the overlapping indices, and a
tree split on a feature the vector does not have routes left.
"""

from __future__ import annotations

from typing import Sequence

from facehealth.domains.face_health.domain_logic.features import feature_name
from facehealth.domains.face_health.domain_logic.models import (
    DecisionTree,
    ForestModel,
    Leaf,
    LinearModel,
    Split,
    TrainedModel,
)


def predict_linear(model: LinearModel, features: Sequence[float]) -> float:
    return model.bias + sum(c * f for c, f in zip(model.coefficients, features))


def predict_tree(tree: DecisionTree, features: Sequence[float]) -> float:
    node = tree
    while True:
        match node:
            case Leaf(value=value):
                return value
            case Split(feature_index=idx, threshold=threshold, left=left, right=right):
                if idx >= len(features) or features[idx] <= threshold:
                    node = left
                else:
                    node = right
            case _:
                raise TypeError(f"Not a decision tree node: {node!r}")


def predict_forest(model: ForestModel, features: Sequence[float]) -> float:
    return sum(predict_tree(t, features) for t in model.trees) / len(model.trees)


def predict(model: TrainedModel, features: Sequence[float]) -> float:
    """Evaluate a trained model of either family on one feature vector."""
    match model:
        case LinearModel():
            return predict_linear(model, features)
        case ForestModel():
            return predict_forest(model, features)
    raise TypeError(f"Not a trained model: {model!r}")


def importance_vector(model: TrainedModel) -> list[float]:
    """Per-feature importance summing to 1 (or all zeros).

    Forests report their variance-reduction importance; linear models use
    normalized absolute coefficients.
    """
    match model:
        case ForestModel(feature_importance=importance):
            return list(importance)
        case LinearModel(coefficients=coefficients):
            magnitudes = [abs(c) for c in coefficients]
            total = sum(magnitudes)
            return [m / total for m in magnitudes] if total > 0 else magnitudes
    raise TypeError(f"Not a trained model: {model!r}")


def feature_importance_report(model: TrainedModel) -> list[tuple[str, float]]:
    """(feature name, importance) pairs, most important first."""
    pairs = [(feature_name(i), v) for i, v in enumerate(importance_vector(model))]
    return sorted(pairs, key=lambda p: p[1], reverse=True)
