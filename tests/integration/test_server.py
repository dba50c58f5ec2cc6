"""Integration tests for the Face Health MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from facehealth.core.config.settings import Settings
from facehealth.core.server.app import create_app
from facehealth.core.server.main import (
    InsecureBindError,
    _is_loopback_host,
    check_bind_address,
)
from facehealth.domains.face_health.domain_logic.features import FEATURE_COUNT


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "train_face_model",
    "retrain_all_face_models",
    "face_model_cross_validation",
    "predict_from_features",
    "face_model_status",
    "face_model_feature_importance",
    "delete_face_model",
    "delete_all_face_models",
    "list_model_snapshots",
    "save_model_snapshot",
    "restore_model_snapshot",
    "delete_model_snapshot",
]


@pytest.fixture
def client():
    """MCP client for a server configured from the (hermetic) environment."""
    return Client(create_app())


def test_server_starts_and_lists_tools(client):
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            text = str(result)
            assert "ok" in text
            assert "mock" in text
    _run(_check())


def test_mock_captures_train_end_to_end(client):
    """Default server trains on generated captures and serves predictions."""
    async def _check():
        async with client:
            trained = _payload(await client.call_tool(
                "train_face_model", {"target_id": "sleepScore"}
            ))
            assert trained["status"] == "trained"
            assert trained["day_count"] == 21
            assert trained["capture_count"] == 63

            predicted = _payload(await client.call_tool(
                "predict_from_features",
                {"target_id": "sleepScore", "features": [0.5] * FEATURE_COUNT},
            ))
            assert predicted["status"] == "ok"
            assert predicted["sleep_status"] in {"excellent", "good", "fair", "poor"}
    _run(_check())


def test_encryption_key_from_environment(monkeypatch, tmp_path):
    from cryptography.fernet import Fernet

    models_dir = tmp_path / "encrypted_models"
    monkeypatch.setenv("MODELS_DIR", str(models_dir))
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())

    async def _check():
        async with Client(create_app()) as client:
            await client.call_tool("train_face_model", {"target_id": "hrv"})
    _run(_check())

    raw = (models_dir / "hrv_model.json").read_bytes()
    assert b"coefficients" not in raw


@pytest.mark.parametrize("host,expected", [
    ("127.0.0.1", True),
    ("localhost", True),
    ("::1", True),
    ("LOCALHOST", True),
    ("0.0.0.0", False),
    ("192.168.1.10", False),
    ("example.com", False),
])
def test_loopback_guard(host, expected):
    assert _is_loopback_host(host) is expected


class TestBindGuard:
    def test_loopback_allowed(self):
        check_bind_address(Settings(facehealth_host="127.0.0.1"))

    def test_public_host_refused(self):
        with pytest.raises(InsecureBindError, match="FACEHEALTH_ALLOW_INSECURE_BIND"):
            check_bind_address(
                Settings(facehealth_host="0.0.0.0", facehealth_allow_insecure_bind=False)
            )

    def test_override_allows_public_host(self):
        check_bind_address(
            Settings(facehealth_host="0.0.0.0", facehealth_allow_insecure_bind=True)
        )
