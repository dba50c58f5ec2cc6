"""Day aggregation: one training row per calendar day.

Several captures a day share one ground-truth health reading, so training on
raw captures would leak the same target into both sides of a validation
split. Captures are grouped by local calendar date; features are averaged and
the day's target follows the configured :class:`DayTargetPolicy`.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections import defaultdict
from datetime import date, datetime
from typing import Iterable

from facehealth.domains.face_health.domain_logic.models import (
    CaptureSample,
    DaySample,
    DayTargetPolicy,
)
from facehealth.domains.face_health.domain_logic.targets import TargetExtractor

logger = logging.getLogger(__name__)


def local_day(timestamp: datetime) -> date:
    """Calendar date of a capture in local time (naive timestamps are local)."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.date()


def _usable(
    captures: Iterable[CaptureSample], extractor: TargetExtractor
) -> list[tuple[CaptureSample, float]]:
    usable: list[tuple[CaptureSample, float]] = []
    for capture in captures:
        if not capture.features or capture.health_data is None:
            continue
        if not all(math.isfinite(v) for v in capture.features):
            logger.debug("Skipping capture %s with non-finite features", capture.id)
            continue
        target = extractor(capture.health_data)
        if target is None:
            continue
        usable.append((capture, target))
    return usable


def mean_vector(vectors: list[list[float]]) -> list[float]:
    """Elementwise mean; vectors of unequal length are truncated to the shortest."""
    count = len(vectors)
    return [sum(column) / count for column in zip(*vectors)]


def aggregate_by_day(
    captures: Iterable[CaptureSample],
    extractor: TargetExtractor,
    policy: DayTargetPolicy = DayTargetPolicy.LATEST,
) -> list[DaySample]:
    """Group usable captures into one :class:`DaySample` per calendar day.

    Captures without a feature vector, without health data, or whose health
    data yields no target value are dropped before grouping.

    Args:
        captures: Raw captures for any span of days, in any order.
        extractor: Maps a capture's health fields to its target value.
        policy: ``LATEST`` uses the last capture's target, ``MEAN`` the
            mean of all the day's targets.

    Returns:
        Day records in no particular order.
    """
    groups: dict[date, list[tuple[CaptureSample, float]]] = defaultdict(list)
    usable = _usable(captures, extractor)
    for capture, target in usable:
        groups[local_day(capture.timestamp)].append((capture, target))

    days: list[DaySample] = []
    for day_key, members in groups.items():
        members.sort(key=lambda m: m[0].timestamp)
        last_capture, last_target = members[-1]

        if policy is DayTargetPolicy.MEAN:
            target = statistics.fmean(t for _, t in members)
        else:
            target = last_target

        days.append(DaySample(
            day_key=day_key,
            features=mean_vector([list(c.features or []) for c, _ in members]),
            target=target,
            representative_date=last_capture.timestamp,
            source_capture_ids=[c.id for c, _ in members],
        ))

    logger.debug(
        "Aggregated %d usable captures into %d days (policy=%s)",
        len(usable), len(days), policy.value,
    )
    return days


def count_days(captures: Iterable[CaptureSample], extractor: TargetExtractor) -> int:
    """Number of distinct days with at least one usable capture."""
    return len({local_day(c.timestamp) for c, _ in _usable(captures, extractor)})


def count_usable_captures(captures: Iterable[CaptureSample], extractor: TargetExtractor) -> int:
    return len(_usable(captures, extractor))
