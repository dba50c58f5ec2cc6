"""Ridge regression via the regularized normal equations.

Solves ``(X'X + lambda*I) w = X'y`` with Gaussian elimination and partial
pivoting. The design matrix carries a leading bias column of ones, and the
ridge term is added to every diagonal entry including the bias. Features are
not scaled here; callers pass pre-normalized vectors.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from facehealth.domains.face_health.domain_logic.errors import (
    InsufficientDataError,
    SingularMatrixError,
    TrainingFailedError,
)
from facehealth.domains.face_health.domain_logic.models import LinearModel

logger = logging.getLogger(__name__)

RIDGE_LAMBDA = 0.01
PIVOT_EPSILON = 1e-10


def solve_linear_system(a: Sequence[Sequence[float]], b: Sequence[float]) -> list[float]:
    """Solve ``a x = b`` by Gaussian elimination with partial pivoting.

    Raises:
        SingularMatrixError: If a pivot's magnitude falls below ``PIVOT_EPSILON``.
    """
    augmented = np.column_stack([np.asarray(a, dtype=float), np.asarray(b, dtype=float)])
    n = augmented.shape[0]

    for i in range(n):
        pivot_row = i + int(np.argmax(np.abs(augmented[i:, i])))
        if pivot_row != i:
            augmented[[i, pivot_row]] = augmented[[pivot_row, i]]

        pivot = augmented[i, i]
        if not abs(pivot) >= PIVOT_EPSILON:
            raise SingularMatrixError()

        factors = augmented[i + 1:, i] / pivot
        augmented[i + 1:, i:] -= np.outer(factors, augmented[i, i:])

    x = np.zeros(n)
    for i in reversed(range(n)):
        x[i] = (augmented[i, n] - augmented[i, i + 1:n] @ x[i + 1:]) / augmented[i, i]
    return x.tolist()


def train_linear_regression(
    features: Sequence[Sequence[float]],
    targets: Sequence[float],
    *,
    ridge_lambda: float = RIDGE_LAMBDA,
) -> LinearModel:
    """Fit a ridge-regularized linear model.

    Args:
        features: N feature vectors, all of dimension D.
        targets: N target values.
        ridge_lambda: Penalty added to the Gram matrix diagonal.

    Raises:
        InsufficientDataError: If there are no samples.
        TrainingFailedError: On mismatched lengths, ragged feature vectors or
            non-finite values.
        SingularMatrixError: If the regularized system cannot be solved.
    """
    n = len(features)
    if n == 0:
        raise InsufficientDataError(required=1, actual=0)
    if len(targets) != n:
        raise TrainingFailedError(f"{n} feature vectors but {len(targets)} targets")

    dim = len(features[0])
    if any(len(row) != dim for row in features):
        raise TrainingFailedError("Feature vectors must all have the same length")

    x = np.asarray(features, dtype=float).reshape(n, dim)
    y = np.asarray(targets, dtype=float)
    if not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise TrainingFailedError("Features and targets must be finite")

    design = np.column_stack([np.ones(n), x])
    gram = design.T @ design + ridge_lambda * np.eye(dim + 1)
    rhs = design.T @ y

    weights = solve_linear_system(gram, rhs)
    logger.debug("Fitted ridge regression on %d samples x %d features", n, dim)
    return LinearModel(bias=weights[0], coefficients=weights[1:])
