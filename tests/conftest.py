"""Shared test fixtures and configuration"""
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from ccrelay.core.config import ENV_VARS
from ccrelay.main import create_app
from ccrelay.models.config import AppConfig

from helpers import CC_CREDENTIAL


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Keep the developer's environment out of config loading"""
    for env_name in list(ENV_VARS.values()) + ["CONFIG_PATH"]:
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture
def test_config() -> AppConfig:
    """Configuration used by the app under test"""
    return AppConfig(log_file=None)


@pytest.fixture
def app_client(test_config: AppConfig) -> TestClient:
    """FastAPI test client for an app built with the test configuration"""
    return TestClient(create_app(test_config))


@pytest.fixture
def make_client(test_config: AppConfig) -> Callable[..., TestClient]:
    """Build a test client with some config fields overridden"""
    def _make(**overrides) -> TestClient:
        return TestClient(create_app(test_config.model_copy(update=overrides)))
    return _make


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {CC_CREDENTIAL}"}


@pytest.fixture
def sample_message_request() -> dict:
    """Sample non-streaming Messages API request"""
    return {
        "model": "claude-sonnet-4-5",
        "max_tokens": 256,
        "system": "You are terse.",
        "messages": [{"role": "user", "content": "Hello!"}],
        "metadata": {"user_id": "u-1"},
        "stream": False,
    }


@pytest.fixture
def sample_streaming_request(sample_message_request: dict) -> dict:
    """Sample streaming Messages API request"""
    return {**sample_message_request, "stream": True}


@pytest.fixture
def sample_message_response() -> dict:
    """Sample upstream Messages API response"""
    return {
        "id": "msg_01XYZ",
        "type": "message",
        "role": "assistant",
        "model": "claude-sonnet-4-5",
        "content": [{"type": "text", "text": "Hi! ünïcödé"}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 4},
    }


@pytest.fixture
def sample_stream_events() -> list:
    """Upstream streaming events in emission order"""
    return [
        {"type": "message_start", "message": {"id": "msg_01XYZ", "type": "message", "role": "assistant", "content": []}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 1}},
        {"type": "message_stop"},
    ]
