"""Target value extraction from exported health data fields.

Health data arrives as a flat mapping of export column headers to
string-encoded values (e.g. ``"Heart Rate Variability (ms)": "42.5"``).
Built-in targets map to fixed headers or to the sleep score formula; any
other target id is treated as a header name.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Mapping

TargetExtractor = Callable[[Mapping[str, str]], "float | None"]

SLEEP_SCORE = "sleepScore"
HRV = "hrv"
RESTING_HR = "restingHR"

BUILTIN_TARGETS = {
    SLEEP_SCORE: "Sleep Score",
    HRV: "Heart Rate Variability",
    RESTING_HR: "Resting Heart Rate",
}

HRV_FIELD = "Heart Rate Variability (ms)"
RESTING_HR_FIELD = "Resting Heart Rate (count/min)"

SLEEP_TOTAL_FIELD = "Sleep Analysis [Total] (hr)"
SLEEP_DEEP_FIELD = "Sleep Analysis [Deep] (hr)"
SLEEP_REM_FIELD = "Sleep Analysis [REM] (hr)"
SLEEP_IN_BED_FIELD = "Sleep Analysis [In Bed] (hr)"

# Sleep score: component weights (max points) and nightly targets (hours)
DURATION_WEIGHT = 40.0
DEEP_SLEEP_WEIGHT = 20.0
REM_SLEEP_WEIGHT = 20.0
EFFICIENCY_WEIGHT = 20.0

DURATION_TARGET_HR = 7.5
DEEP_SLEEP_TARGET_HR = 1.5
REM_SLEEP_TARGET_HR = 1.75

EFFICIENCY_DEFAULT_SCORE = 15.0  # used when there is no in-bed data


def parse_number(value: str | None) -> float | None:
    """Parse a string-encoded health value; ``None`` if absent or not a finite number."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


# ---------------------------------------------------------------------------
# Sleep score
# ---------------------------------------------------------------------------

@dataclass
class SleepScoreBreakdown:
    """Per-component sleep score with the inputs that produced it."""

    total_score: float
    duration_score: float
    duration_hours: float
    deep_sleep_score: float
    deep_sleep_hours: float
    rem_sleep_score: float
    rem_sleep_hours: float
    efficiency_score: float
    efficiency: float | None  # None when time in bed is unknown


def compute_sleep_score(
    total_sleep: float,
    deep_sleep: float,
    rem_sleep: float,
    time_in_bed: float,
) -> SleepScoreBreakdown:
    """Score a night of sleep 0-100 from its component durations (hours)."""
    duration_score = min(total_sleep / DURATION_TARGET_HR * DURATION_WEIGHT, DURATION_WEIGHT)
    deep_score = min(deep_sleep / DEEP_SLEEP_TARGET_HR * DEEP_SLEEP_WEIGHT, DEEP_SLEEP_WEIGHT)
    rem_score = min(rem_sleep / REM_SLEEP_TARGET_HR * REM_SLEEP_WEIGHT, REM_SLEEP_WEIGHT)

    efficiency: float | None = None
    if time_in_bed > 0:
        efficiency = min(total_sleep / time_in_bed, 1.0)
        efficiency_score = efficiency * EFFICIENCY_WEIGHT
    else:
        efficiency_score = EFFICIENCY_DEFAULT_SCORE

    return SleepScoreBreakdown(
        total_score=duration_score + deep_score + rem_score + efficiency_score,
        duration_score=duration_score,
        duration_hours=total_sleep,
        deep_sleep_score=deep_score,
        deep_sleep_hours=deep_sleep,
        rem_sleep_score=rem_score,
        rem_sleep_hours=rem_sleep,
        efficiency_score=efficiency_score,
        efficiency=efficiency,
    )


def sleep_score_breakdown(fields: Mapping[str, str]) -> SleepScoreBreakdown | None:
    """Sleep score components from health fields, or ``None`` without total sleep."""
    total = parse_number(fields.get(SLEEP_TOTAL_FIELD))
    if total is None or total <= 0:
        return None
    return compute_sleep_score(
        total_sleep=total,
        deep_sleep=parse_number(fields.get(SLEEP_DEEP_FIELD)) or 0.0,
        rem_sleep=parse_number(fields.get(SLEEP_REM_FIELD)) or 0.0,
        time_in_bed=parse_number(fields.get(SLEEP_IN_BED_FIELD)) or 0.0,
    )


def sleep_score(fields: Mapping[str, str]) -> float | None:
    breakdown = sleep_score_breakdown(fields)
    return breakdown.total_score if breakdown is not None else None


def sleep_score_status(score: float) -> str:
    if score >= 85:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 60:
        return "fair"
    return "poor"


# ---------------------------------------------------------------------------
# Extractor lookup
# ---------------------------------------------------------------------------

def _field_extractor(key: str) -> TargetExtractor:
    def extract(fields: Mapping[str, str]) -> float | None:
        return parse_number(fields.get(key))

    return extract


def extractor_for(target_id: str) -> TargetExtractor:
    """Return the target extractor for a built-in or custom target id.

    Custom targets use the target id itself as the health field key.
    """
    if target_id == SLEEP_SCORE:
        return sleep_score
    if target_id == HRV:
        return _field_extractor(HRV_FIELD)
    if target_id == RESTING_HR:
        return _field_extractor(RESTING_HR_FIELD)
    return _field_extractor(target_id)


def extract_target(target_id: str, fields: Mapping[str, str]) -> float | None:
    return extractor_for(target_id)(fields)


def display_name(target_id: str) -> str:
    return BUILTIN_TARGETS.get(target_id, target_id)
