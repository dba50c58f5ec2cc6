"""Concrete CaptureSource implementations."""

from __future__ import annotations

from facehealth.domains.face_health.connectors.mock_data import generate_mock_captures
from facehealth.domains.face_health.domain_logic.models import CaptureSample


class MockCaptureSource:
    """Uses the mock capture generator. Always available.

    Captures are generated once and reused, so repeated tool calls train on
    the same data.
    """

    def __init__(self, days: int = 21, captures_per_day: int = 3, *, seed: int | None = 7) -> None:
        self._days = days
        self._captures_per_day = captures_per_day
        self._seed = seed
        self._captures: list[CaptureSample] | None = None

    async def load_captures(self) -> list[CaptureSample]:
        if self._captures is None:
            self._captures = generate_mock_captures(
                self._days, self._captures_per_day, seed=self._seed
            )
        return list(self._captures)

    def is_connected(self) -> bool:
        return False

    @property
    def data_source(self) -> str:
        return "mock"


class StaticCaptureSource:
    """Serves a fixed list of captures (for embedding and tests)."""

    def __init__(self, captures: list[CaptureSample], *, label: str = "static") -> None:
        self._captures = sorted(captures, key=lambda c: c.timestamp, reverse=True)
        self._label = label

    async def load_captures(self) -> list[CaptureSample]:
        return list(self._captures)

    def is_connected(self) -> bool:
        return True

    @property
    def data_source(self) -> str:
        return self._label
