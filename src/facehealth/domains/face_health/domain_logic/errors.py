"""Training error taxonomy.

Every error carries a machine-readable ``kind`` and the affected
``target_id`` (when known) so callers can tell "need more data" apart from
"numerically degenerate" and other failures.
"""

from __future__ import annotations


class ModelTrainerError(Exception):
    """Base class for training and evaluation failures."""

    kind = "training_failed"

    def __init__(self, message: str, *, target_id: str | None = None) -> None:
        super().__init__(message)
        self.target_id = target_id

    def with_target(self, target_id: str) -> ModelTrainerError:
        """Attach the affected target id (in place) and return self."""
        self.target_id = target_id
        return self

    def to_dict(self) -> dict:
        return {"error": self.kind, "target_id": self.target_id, "message": str(self)}


class InsufficientDataError(ModelTrainerError):
    """Fewer usable day records than a training run requires."""

    kind = "insufficient_data"

    def __init__(self, required: int, actual: int, *, target_id: str | None = None) -> None:
        super().__init__(
            f"Need at least {required} days of data, have {actual}",
            target_id=target_id,
        )
        self.required = required
        self.actual = actual

    def to_dict(self) -> dict:
        return {**super().to_dict(), "required": self.required, "actual": self.actual}


class SingularMatrixError(ModelTrainerError):
    """The ridge normal equations hit a near-zero pivot."""

    kind = "singular_matrix"

    def __init__(self, message: str = "Cannot solve - singular matrix", *, target_id: str | None = None) -> None:
        super().__init__(message, target_id=target_id)


class TrainingFailedError(ModelTrainerError):
    """Any other training failure (bad input shape, persistence failure)."""

    kind = "training_failed"
