"""Mock capture generators for development and testing.

Generated captures carry a real (noisy) relationship between a handful of
facial features and the health readings, so trained models should reach a
moderate-to-strong cross-validated correlation on them.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta

from facehealth.domains.face_health.domain_logic.features import FEATURE_COUNT
from facehealth.domains.face_health.domain_logic.models import CaptureSample
from facehealth.domains.face_health.domain_logic.targets import (
    HRV_FIELD,
    RESTING_HR_FIELD,
    SLEEP_DEEP_FIELD,
    SLEEP_IN_BED_FIELD,
    SLEEP_REM_FIELD,
    SLEEP_TOTAL_FIELD,
)

# Feature indices driving the synthetic readings
_EYE_OPENNESS = (0, 1)
_ALERTNESS = 17
_TENSION = 18


def mock_health_fields(rested: float, tension: float, rng: random.Random) -> dict[str, str]:
    """Health readings for one night given latent restedness/tension in [0, 1]."""
    total = 5.0 + 3.5 * rested + rng.gauss(0, 0.3)
    deep = max(0.2, 0.6 + 1.2 * rested + rng.gauss(0, 0.15))
    rem = max(0.3, 0.9 + 1.0 * rested + rng.gauss(0, 0.15))
    in_bed = total + 0.3 + abs(rng.gauss(0, 0.3))
    hrv = 25 + 40 * rested - 15 * tension + rng.gauss(0, 4)
    resting_hr = 72 - 12 * rested + 8 * tension + rng.gauss(0, 2)
    return {
        SLEEP_TOTAL_FIELD: f"{total:.2f}",
        SLEEP_DEEP_FIELD: f"{deep:.2f}",
        SLEEP_REM_FIELD: f"{rem:.2f}",
        SLEEP_IN_BED_FIELD: f"{in_bed:.2f}",
        HRV_FIELD: f"{hrv:.1f}",
        RESTING_HR_FIELD: f"{resting_hr:.1f}",
    }


def mock_features(rested: float, tension: float, rng: random.Random) -> list[float]:
    features = [min(1.0, max(0.0, rng.gauss(0.5, 0.15))) for _ in range(FEATURE_COUNT)]
    for i in _EYE_OPENNESS:
        features[i] = min(1.0, max(0.0, 0.35 + 0.5 * rested + rng.gauss(0, 0.05)))
    features[_ALERTNESS] = min(1.0, max(0.0, 0.3 + 0.6 * rested + rng.gauss(0, 0.05)))
    features[_TENSION] = min(1.0, max(0.0, 0.2 + 0.6 * tension + rng.gauss(0, 0.05)))
    return features


def generate_mock_captures(
    days: int = 21,
    captures_per_day: int = 3,
    *,
    seed: int | None = None,
    end: datetime | None = None,
) -> list[CaptureSample]:
    """Generate ``days * captures_per_day`` captures ending at ``end``.

    All captures of a day share one set of health readings (the morning's
    sleep and heart data), as a real capture archive would. Returned newest
    first.
    """
    rng = random.Random(seed)
    end = (end or datetime.now()).replace(hour=8, minute=0, second=0, microsecond=0)

    captures: list[CaptureSample] = []
    for day in range(days):
        morning = end - timedelta(days=day)
        rested = rng.random()
        tension = rng.random()
        fields = mock_health_fields(rested, tension, rng)
        for n in range(captures_per_day):
            captures.append(CaptureSample(
                id=str(uuid.UUID(int=rng.getrandbits(128))),
                timestamp=morning + timedelta(hours=3 * n, minutes=rng.randrange(60)),
                features=mock_features(rested, tension, rng),
                health_data=fields,
            ))

    captures.sort(key=lambda c: c.timestamp, reverse=True)
    return captures
