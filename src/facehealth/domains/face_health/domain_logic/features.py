"""Reference facial feature layout.

The feature extractor (outside this package) produces 24 values in this
order. Expression intensities are already 0-1, composite indicator scores
are divided by 100, and head pose angles are rescaled from -45..45 degrees.
"""

from __future__ import annotations

FEATURE_NAMES: list[str] = [
    "Eye Openness L", "Eye Openness R",
    "Eye Blink L", "Eye Blink R",
    "Eye Squint L", "Eye Squint R",
    "Brow Raise L", "Brow Raise R", "Brow Furrow",
    "Smile L", "Smile R",
    "Frown L", "Frown R",
    "Mouth Open", "Lip Press",
    "Cheek Squint L", "Cheek Squint R",
    "Alertness", "Tension", "Smile Score", "Symmetry",
    "Head Pitch", "Head Yaw", "Head Roll",
]

FEATURE_COUNT = len(FEATURE_NAMES)

HEAD_ANGLE_RANGE_DEG = 45.0


def normalize_head_angle(degrees: float) -> float:
    """Map a head pose angle from [-45, 45] degrees onto [0, 1] (not clamped)."""
    return (degrees + HEAD_ANGLE_RANGE_DEG) / (2 * HEAD_ANGLE_RANGE_DEG)


def feature_name(index: int) -> str:
    if 0 <= index < FEATURE_COUNT:
        return FEATURE_NAMES[index]
    return f"feature_{index}"
