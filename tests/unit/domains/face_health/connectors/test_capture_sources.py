"""Tests for the JSON directory and mock capture sources."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime

import pytest

from facehealth.domains.face_health.connectors import CaptureSource
from facehealth.domains.face_health.connectors.json_directory import (
    CaptureFormatError,
    JsonCaptureDirectory,
    capture_from_dict,
    capture_to_dict,
)
from facehealth.domains.face_health.connectors.mock_data import generate_mock_captures
from facehealth.domains.face_health.connectors.providers import (
    MockCaptureSource,
    StaticCaptureSource,
)
from facehealth.domains.face_health.domain_logic.aggregation import count_days
from facehealth.domains.face_health.domain_logic.features import FEATURE_COUNT
from facehealth.domains.face_health.domain_logic.targets import extractor_for


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _doc(capture_id: str, timestamp: str, **overrides) -> dict:
    doc = {
        "id": capture_id,
        "timestamp": timestamp,
        "features": [0.1, 0.2],
        "health_data": {"Heart Rate Variability (ms)": "45"},
    }
    doc.update(overrides)
    return doc


class TestCaptureDocuments:
    def test_parse(self):
        capture = capture_from_dict(_doc("a", "2026-02-01T07:30:00"))
        assert capture.id == "a"
        assert capture.timestamp == datetime(2026, 2, 1, 7, 30)
        assert capture.features == [0.1, 0.2]
        assert capture.health_data == {"Heart Rate Variability (ms)": "45"}

    def test_null_sections_allowed(self):
        capture = capture_from_dict(_doc("a", "2026-02-01T07:30:00", features=None, health_data=None))
        assert capture.features is None
        assert capture.health_data is None

    def test_numeric_health_values_become_strings(self):
        capture = capture_from_dict(_doc("a", "2026-02-01T07:30:00", health_data={"hrv": 45}))
        assert capture.health_data == {"hrv": "45"}

    @pytest.mark.parametrize("doc", [
        [],
        {"timestamp": "2026-02-01T07:30:00"},
        {"id": "a", "timestamp": "yesterday"},
        {"id": "a", "timestamp": "2026-02-01T07:30:00", "features": ["x"]},
        {"id": "a", "timestamp": "2026-02-01T07:30:00", "features": [True]},
        {"id": "a", "timestamp": "2026-02-01T07:30:00", "health_data": [1]},
    ])
    def test_malformed(self, doc):
        with pytest.raises(CaptureFormatError):
            capture_from_dict(doc)

    def test_to_dict_round_trip(self):
        capture = capture_from_dict(_doc("a", "2026-02-01T07:30:00+01:00"))
        assert capture_from_dict(capture_to_dict(capture)) == capture


class TestJsonCaptureDirectory:
    def test_loads_recursively_newest_first(self, tmp_path):
        (tmp_path / "2026" / "02").mkdir(parents=True)
        (tmp_path / "old.json").write_text(json.dumps(_doc("old", "2026-01-01T08:00:00")))
        (tmp_path / "2026" / "02" / "new.json").write_text(
            json.dumps(_doc("new", "2026-02-01T08:00:00"))
        )
        source = JsonCaptureDirectory(tmp_path)
        captures = _run(source.load_captures())
        assert [c.id for c in captures] == ["new", "old"]
        assert source.is_connected()
        assert source.data_source == "json_directory"

    def test_bad_files_skipped(self, tmp_path):
        (tmp_path / "good.json").write_text(json.dumps(_doc("good", "2026-01-01T08:00:00")))
        (tmp_path / "broken.json").write_text("{")
        (tmp_path / "wrong.json").write_text(json.dumps({"id": "x"}))
        (tmp_path / "notes.txt").write_text("ignored")
        captures = _run(JsonCaptureDirectory(tmp_path).load_captures())
        assert [c.id for c in captures] == ["good"]

    def test_missing_directory(self, tmp_path):
        source = JsonCaptureDirectory(tmp_path / "absent")
        assert not source.is_connected()
        assert _run(source.load_captures()) == []


class TestMockCaptures:
    def test_shape(self):
        captures = generate_mock_captures(days=5, captures_per_day=2, seed=1)
        assert len(captures) == 10
        assert all(len(c.features) == FEATURE_COUNT for c in captures)
        assert captures == sorted(captures, key=lambda c: c.timestamp, reverse=True)

    def test_one_day_per_group(self):
        captures = generate_mock_captures(days=9, captures_per_day=3, seed=2)
        for target in ("sleepScore", "hrv", "restingHR"):
            assert count_days(captures, extractor_for(target)) == 9

    def test_seed_is_deterministic(self):
        end = datetime(2026, 2, 1)
        a = generate_mock_captures(days=3, seed=5, end=end)
        b = generate_mock_captures(days=3, seed=5, end=end)
        assert a == b


class TestProviders:
    def test_mock_source_is_stable_between_calls(self):
        source = MockCaptureSource(days=4, captures_per_day=2)
        first = _run(source.load_captures())
        second = _run(source.load_captures())
        assert first == second
        assert len(first) == 8
        assert source.data_source == "mock"
        assert not source.is_connected()

    def test_sources_satisfy_protocol(self, tmp_path):
        assert isinstance(MockCaptureSource(), CaptureSource)
        assert isinstance(JsonCaptureDirectory(tmp_path), CaptureSource)
        assert isinstance(StaticCaptureSource([]), CaptureSource)
