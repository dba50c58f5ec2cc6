"""Bagged regression-tree ensemble ("random forest").

Each tree is grown on a bootstrap resample with greedy variance-reduction
splits over a random feature subset per node. Prediction averages the trees.

Randomness comes from an injectable ``random.Random``; by default the
process-wide ``random`` module state is used, so results differ between runs.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from facehealth.domains.face_health.domain_logic.errors import (
    InsufficientDataError,
    TrainingFailedError,
)
from facehealth.domains.face_health.domain_logic.models import (
    DecisionTree,
    ForestModel,
    Leaf,
    Split,
)

logger = logging.getLogger(__name__)

DEFAULT_TREE_COUNT = 50
DEFAULT_MAX_DEPTH = 5
MIN_SAMPLES_TO_SPLIT = 5
MAX_THRESHOLD_CANDIDATES = 10

# Shared unseeded generator, used when no random source is injected
_process_rng = random.Random()


@dataclass
class _BestSplit:
    feature_index: int = -1
    threshold: float = 0.0
    reduction: float = 0.0


def variance(values: Sequence[float]) -> float:
    """Population variance (0 for fewer than two values)."""
    if len(values) < 2:
        return 0.0
    return float(np.var(values))


def threshold_candidates(sorted_values: Sequence[float]) -> list[float]:
    """Midpoints between adjacent sorted values at (up to) decile boundaries."""
    n = len(sorted_values)
    step = max(1, math.ceil(n / MAX_THRESHOLD_CANDIDATES))
    return [
        float(sorted_values[i - 1] + sorted_values[i]) / 2
        for i in range(step, n, step)
    ]


class _TreeBuilder:
    def __init__(
        self,
        *,
        max_depth: int,
        feature_count: int,
        subset_size: int,
        rng: random.Random,
    ) -> None:
        self.max_depth = max_depth
        self.feature_count = feature_count
        self.subset_size = subset_size
        self.rng = rng
        # (feature_index, variance_reduction) for every split node grown
        self.splits: list[tuple[int, float]] = []

    def build(self, x: np.ndarray, y: np.ndarray, depth: int = 0) -> DecisionTree:
        if (
            depth >= self.max_depth
            or y.size < MIN_SAMPLES_TO_SPLIT
            or np.all(y == y[0])
        ):
            return Leaf(float(y.mean()))

        best = self._find_best_split(x, y)
        if best.reduction <= 0:
            return Leaf(float(y.mean()))

        self.splits.append((best.feature_index, best.reduction))

        goes_left = x[:, best.feature_index] <= best.threshold
        return Split(
            feature_index=best.feature_index,
            threshold=best.threshold,
            left=self.build(x[goes_left], y[goes_left], depth + 1),
            right=self.build(x[~goes_left], y[~goes_left], depth + 1),
        )

    def _find_best_split(self, x: np.ndarray, y: np.ndarray) -> _BestSplit:
        best = _BestSplit()
        n = y.size
        node_variance = float(np.var(y))
        candidates = self.rng.sample(range(self.feature_count), self.subset_size)

        for feature_index in candidates:
            column = x[:, feature_index]
            for threshold in threshold_candidates(np.sort(column)):
                goes_left = column <= threshold
                n_left = int(goes_left.sum())
                if n_left == 0 or n_left == n:
                    continue
                weighted = (
                    n_left * np.var(y[goes_left]) + (n - n_left) * np.var(y[~goes_left])
                ) / n
                reduction = node_variance - float(weighted)
                if reduction > best.reduction:
                    best = _BestSplit(feature_index, threshold, reduction)
        return best


def train_random_forest(
    features: Sequence[Sequence[float]],
    targets: Sequence[float],
    *,
    tree_count: int = DEFAULT_TREE_COUNT,
    max_depth: int = DEFAULT_MAX_DEPTH,
    rng: random.Random | None = None,
) -> ForestModel:
    """Fit a bagged ensemble of variance-reduction regression trees.

    Args:
        features: N feature vectors, all of dimension D.
        targets: N target values.
        tree_count: Number of bootstrap trees.
        max_depth: Maximum depth of each tree (root is depth 0).
        rng: Random source for bootstrap draws and feature subsets.

    Returns:
        The ensemble with feature importance normalized to sum to 1, or
        all zeros when no tree made a split.
    """
    n = len(features)
    if n == 0:
        raise InsufficientDataError(required=1, actual=0)
    if len(targets) != n:
        raise TrainingFailedError(f"{n} feature vectors but {len(targets)} targets")
    if tree_count < 1:
        raise TrainingFailedError("tree_count must be at least 1")

    feature_count = len(features[0])
    if any(len(row) != feature_count for row in features):
        raise TrainingFailedError("Feature vectors must all have the same length")

    x = np.asarray(features, dtype=float).reshape(n, feature_count)
    y = np.asarray(targets, dtype=float)
    if not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise TrainingFailedError("Features and targets must be finite")

    rng = rng or _process_rng
    subset_size = min(feature_count, math.ceil(math.sqrt(feature_count)))

    importance_sum = np.zeros(feature_count)
    usage_count = np.zeros(feature_count, dtype=int)
    trees: list[DecisionTree] = []

    for _ in range(tree_count):
        indices = [rng.randrange(n) for _ in range(n)]
        builder = _TreeBuilder(
            max_depth=max_depth,
            feature_count=feature_count,
            subset_size=subset_size,
            rng=rng,
        )
        trees.append(builder.build(x[indices], y[indices]))
        for feature_index, reduction in builder.splits:
            importance_sum[feature_index] += reduction
            usage_count[feature_index] += 1

    importance = np.divide(
        importance_sum,
        usage_count,
        out=np.zeros(feature_count),
        where=usage_count > 0,
    )
    grand_total = importance.sum()
    if grand_total > 0:
        importance /= grand_total

    logger.debug(
        "Grew %d trees on %d samples (%d split nodes)",
        tree_count, n, int(usage_count.sum()),
    )
    return ForestModel(trees=trees, feature_importance=importance.tolist())
