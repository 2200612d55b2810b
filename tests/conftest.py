"""
Pytest configuration and fixtures for notifyrelay tests.

This module provides shared fixtures: isolated configuration and data
directories, a mock API client, in-memory stores, sample server
notifications and a recording alert sink.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from notifyrelay.alerts import Alert
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.config import (
    ENV_ACCESS_TOKEN,
    ENV_CONFIG_PATH,
    ENV_DATA_DIR,
    ENV_LOG_LEVEL,
    ENV_SERVER_URL,
)
from notifyrelay.local_store import MemoryStore
from notifyrelay.models import NotificationRecord, Priority, SystemPayload
from notifyrelay.notification_store import NotificationStore
from notifyrelay.token_store import TokenStore


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path: Path) -> Path:
    """
    Isolate every test from the user's configuration and data.

    Removes NOTIFYRELAY_* overrides and points the config file and data
    directory into the test's temporary directory.

    Returns:
        Temporary data directory
    """
    for name in (ENV_SERVER_URL, ENV_ACCESS_TOKEN, ENV_LOG_LEVEL):
        monkeypatch.delenv(name, raising=False)

    data_dir = tmp_path / "data"
    monkeypatch.setenv(ENV_DATA_DIR, str(data_dir))
    monkeypatch.setenv(ENV_CONFIG_PATH, str(tmp_path / "config" / "relay-config.yaml"))
    return data_dir


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Temporary directory for configuration files."""
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def relay_config_data() -> dict:
    """Sample relay configuration file contents."""
    return {
        "server_url": "http://localhost:8000",
        "access_token": "tok_test_1234567890abcdef",
        "device_id": "dev_test_device",
        "provider_type": "service_provider",
        "log_level": "DEBUG",
        "request_timeout": 10.0,
    }


# ============================================================================
# Mock Server Fixtures
# ============================================================================


@pytest.fixture
def mock_server_url() -> str:
    """Mock notification server URL."""
    return "http://localhost:8000"


@pytest.fixture
def mock_access_token() -> str:
    """Mock bearer access token."""
    return "tok_test_1234567890abcdef"


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    """
    Factory for mock httpx responses.

    Returns:
        Callable(status_code, body=None, content_type="application/json")
    """

    def factory(
        status_code: int,
        body: Any = None,
        content_type: str = "application/json",
    ) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.headers = {"content-type": content_type} if content_type else {}
        if isinstance(body, Exception):
            response.json.side_effect = body
        else:
            response.json.return_value = body
        return response

    return factory


@pytest.fixture
def mock_api_client() -> MagicMock:
    """
    Mock NotificationApiClient.

    Every endpoint is an AsyncMock; polls return an empty list by default.
    """
    client = MagicMock()
    client.fetch_notifications = AsyncMock(return_value=[])
    client.mark_read = AsyncMock(return_value=None)
    client.register_push_token = AsyncMock(return_value={})
    client.revoke_push_token = AsyncMock(return_value=None)
    client.get_preferences = AsyncMock(return_value=None)
    client.update_preferences = AsyncMock(return_value=None)
    client.close = AsyncMock()
    return client


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def token_store(tmp_path: Path) -> TokenStore:
    return TokenStore(base_dir=tmp_path / "secrets")


@pytest.fixture
def monitor() -> ChannelHealthMonitor:
    return ChannelHealthMonitor()


@pytest.fixture
def notification_store() -> NotificationStore:
    return NotificationStore()


# ============================================================================
# Notification Fixtures
# ============================================================================


@pytest.fixture
def sample_server_notification() -> dict:
    """A notification object as returned by the poll endpoint."""
    return {
        "id": "ntf_0001",
        "title": "New Job Request",
        "message": "Plumbing repair requested nearby",
        "type": "new_job_request",
        "providerType": "service_provider",
        "data": {"bookingId": "bkg_42", "serviceType": "plumbing", "urgency": "normal"},
        "createdAt": "2024-05-01T10:00:00Z",
        "read": False,
        "priority": "high",
    }


@pytest.fixture
def make_record() -> Callable[..., NotificationRecord]:
    """
    Factory for NotificationRecords.

    Returns:
        Callable(id, timestamp=1000, priority=Priority.MEDIUM, **fields)
    """

    def factory(
        record_id: str,
        timestamp: int = 1000,
        priority: Priority = Priority.MEDIUM,
        **fields: Any,
    ) -> NotificationRecord:
        values: Dict[str, Any] = {
            "id": record_id,
            "title": f"Notification {record_id}",
            "body": "",
            "priority": priority,
            "payload": SystemPayload(),
            "timestamp": timestamp,
        }
        values.update(fields)
        return NotificationRecord(**values)

    return factory


# ============================================================================
# Alert Sink Fixtures
# ============================================================================


@dataclass
class RecordingSink:
    """AlertSink that records every call with the loop time it happened."""

    alerts: List[Alert] = field(default_factory=list)
    sounds: List[Tuple[Priority, float]] = field(default_factory=list)
    vibrations: List[Tuple[int, ...]] = field(default_factory=list)
    fail_sound: bool = False
    fail_alert: bool = False

    async def show_alert(self, alert: Alert) -> None:
        if self.fail_alert:
            raise RuntimeError("display unavailable")
        self.alerts.append(alert)

    async def play_sound(self, priority: Priority) -> None:
        if self.fail_sound:
            raise RuntimeError("audio unavailable")
        self.sounds.append((priority, asyncio.get_running_loop().time()))

    async def vibrate(self, pattern: Tuple[int, ...]) -> None:
        self.vibrations.append(pattern)

    def sounds_for(self, priority: Priority) -> List[float]:
        return [at for p, at in self.sounds if p is priority]


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0)


@pytest.fixture
def wait_for() -> Callable[..., Any]:
    """Fixture exposing ``wait_until`` to tests."""
    return wait_until
