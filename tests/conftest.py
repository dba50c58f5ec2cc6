"""Shared test fixtures for Face Health tests."""

from __future__ import annotations

import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from facehealth.core.audit.logger import AuditLogger  # noqa: E402
from facehealth.core.storage.database import AuditDatabase  # noqa: E402
from facehealth.domains.face_health.domain_logic.models import CaptureSample  # noqa: E402
from facehealth.domains.face_health.storage.model_store import ModelStore  # noqa: E402

CUSTOM_TARGET = "Custom Metric"


# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MODELS_DIR", str(tmp_path / "env_models"))
    monkeypatch.setenv("SNAPSHOTS_DIR", str(tmp_path / "env_snapshots"))
    monkeypatch.setenv("AUDIT_DB_PATH", str(tmp_path / "env_audit.db"))
    monkeypatch.setenv("CAPTURES_DIR", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DEFAULT_MODEL_TYPE", "linear")
    monkeypatch.setenv("FOREST_TREE_COUNT", "10")


# ---------------------------------------------------------------------------
# Capture builders
# ---------------------------------------------------------------------------

def make_capture(
    capture_id: str,
    timestamp: datetime,
    features: list[float] | None,
    value: float | None,
    *,
    target: str = CUSTOM_TARGET,
) -> CaptureSample:
    """Capture whose health data holds ``value`` under the ``target`` field."""
    health_data = None if value is None else {target: str(value)}
    return CaptureSample(
        id=capture_id, timestamp=timestamp, features=features, health_data=health_data
    )


def make_linear_captures(
    days: int = 10,
    per_day: int = 1,
    *,
    seed: int = 1,
    start: datetime = datetime(2026, 1, 5, 9, 0),
) -> list[CaptureSample]:
    """Captures whose day-level target is exactly 2*f0 - f1 + 3."""
    rng = random.Random(seed)
    captures = []
    for day in range(days):
        f0 = rng.uniform(0, 10)
        f1 = rng.uniform(0, 10)
        value = 2 * f0 - f1 + 3
        for n in range(per_day):
            captures.append(make_capture(
                f"d{day}-c{n}",
                start + timedelta(days=day, hours=2 * n),
                [f0, f1],
                value,
            ))
    return captures


@pytest.fixture
def linear_captures() -> list[CaptureSample]:
    return make_linear_captures()


@pytest.fixture
def linear_capture_factory():
    return make_linear_captures


@pytest.fixture
def capture_factory():
    return make_capture


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def model_store(tmp_path: Path) -> ModelStore:
    return ModelStore(tmp_path / "models", tmp_path / "snapshots")


@pytest.fixture
def audit_db():
    db = AuditDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def audit_logger(audit_db: AuditDatabase) -> AuditLogger:
    return AuditLogger(audit_db)
