"""Capture sources: where face captures and their health readings come from."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from facehealth.domains.face_health.domain_logic.models import CaptureSample


@runtime_checkable
class CaptureSource(Protocol):
    """Abstract interface for capture retrieval.

    Tools call these methods without knowing whether captures come from an
    on-disk capture archive or a mock generator.
    """

    async def load_captures(self) -> list[CaptureSample]:
        """All available captures, newest first."""
        ...

    def is_connected(self) -> bool:
        """Whether real captures are available."""
        ...

    @property
    def data_source(self) -> str:
        """Label for the active source: 'json_directory' or 'mock'."""
        ...
