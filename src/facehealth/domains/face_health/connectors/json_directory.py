"""Capture source backed by a directory of JSON capture documents.

Each ``*.json`` file (searched recursively) holds one capture::

    {
      "id": "5F0C...",
      "timestamp": "2026-02-01T07:45:12+01:00",
      "features": [0.61, 0.58, ...],
      "health_data": {"Sleep Analysis [Total] (hr)": "7.2", ...}
    }

``features`` and ``health_data`` may be null; such captures are kept and
filtered out later by day aggregation.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from facehealth.domains.face_health.domain_logic.models import CaptureSample

logger = logging.getLogger(__name__)


class CaptureFormatError(ValueError):
    """Raised when a capture document is malformed."""


def capture_from_dict(data: Any) -> CaptureSample:
    """Build a :class:`CaptureSample` from a decoded capture document.

    Raises:
        CaptureFormatError: On missing id/timestamp or wrongly typed fields.
    """
    if not isinstance(data, dict):
        raise CaptureFormatError("capture document must be an object")
    try:
        capture_id = str(data["id"])
        timestamp = datetime.fromisoformat(str(data["timestamp"]))
    except (KeyError, ValueError) as exc:
        raise CaptureFormatError(f"invalid id/timestamp: {exc}") from exc

    features = data.get("features")
    if features is not None:
        if not isinstance(features, list) or any(
            isinstance(v, bool) or not isinstance(v, (int, float)) for v in features
        ):
            raise CaptureFormatError("features must be a list of numbers")
        features = [float(v) for v in features]

    health_data = data.get("health_data")
    if health_data is not None:
        if not isinstance(health_data, dict):
            raise CaptureFormatError("health_data must be an object")
        health_data = {str(k): str(v) for k, v in health_data.items() if v is not None}

    return CaptureSample(
        id=capture_id, timestamp=timestamp, features=features, health_data=health_data
    )


def capture_to_dict(capture: CaptureSample) -> dict[str, Any]:
    return {
        "id": capture.id,
        "timestamp": capture.timestamp.isoformat(),
        "features": capture.features,
        "health_data": dict(capture.health_data) if capture.health_data is not None else None,
    }


class JsonCaptureDirectory:
    """CaptureSource reading JSON capture documents from a directory tree.

    Usage::

        source = JsonCaptureDirectory("~/FaceHealth/captures")
        if source.is_connected():
            captures = await source.load_captures()
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def load_captures(self) -> list[CaptureSample]:
        """Read every capture document; unreadable files are skipped."""
        if not self.is_connected():
            logger.warning("Capture directory not found: %s", self._path)
            return []

        captures: list[CaptureSample] = []
        skipped = 0
        for file in sorted(self._path.rglob("*.json")):
            try:
                captures.append(capture_from_dict(json.loads(file.read_text(encoding="utf-8"))))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError, CaptureFormatError) as exc:
                skipped += 1
                logger.warning("Skipping capture file %s: %s", file, exc)

        captures.sort(key=lambda c: _sort_key(c.timestamp), reverse=True)
        logger.info(
            "Loaded %d captures from %s (%d skipped)", len(captures), self._path, skipped
        )
        return captures

    def is_connected(self) -> bool:
        return self._path.is_dir()

    @property
    def data_source(self) -> str:
        return "json_directory"


def _sort_key(timestamp: datetime) -> float:
    # Mixed naive/aware timestamps: naive ones are local time.
    return timestamp.timestamp()
