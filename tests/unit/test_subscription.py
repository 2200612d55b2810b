"""
Unit tests for SubscriptionManager.

Tests permission handling, token registration and revocation, and the
server / local / default preference loading order.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notifyrelay.api_client import ApiError, NotificationApiClient
from notifyrelay.local_store import PREFERENCES_KEY
from notifyrelay.models import AlertPreferences, PermissionStatus, PushStatus
from notifyrelay.subscription import (
    NullPushPlatform,
    PermissionDeniedError,
    PushUnsupportedError,
    SubscriptionManager,
    TokenAcquisitionError,
)

DEVICE_ID = "dev_test_device"


def make_platform(permission=PermissionStatus.GRANTED, supported=True, token="push-token"):
    """Fake push platform."""
    platform = MagicMock()
    platform.is_supported.return_value = supported
    platform.permission_status.return_value = permission
    platform.request_permission = AsyncMock(return_value=PermissionStatus.GRANTED)
    platform.obtain_token = AsyncMock(return_value=token)
    platform.revoke_token = AsyncMock(return_value=None)
    return platform


@pytest.fixture
def platform():
    return make_platform()


@pytest.fixture
def manager(mock_api_client, platform, monitor, memory_store, token_store):
    return SubscriptionManager(
        api_client=mock_api_client,
        platform=platform,
        monitor=monitor,
        kv_store=memory_store,
        token_store=token_store,
        device_id=DEVICE_ID,
        provider_type="service_provider",
        user_agent="pytest",
    )


class TestCheckSupport:
    """Tests for support detection."""

    def test_unsupported_platform(self, mock_api_client, monitor, memory_store, token_store):
        manager = SubscriptionManager(
            mock_api_client, NullPushPlatform(), monitor, memory_store, token_store,
            DEVICE_ID, "customer",
        )

        assert manager.check_support() is PermissionStatus.UNSUPPORTED
        assert manager.can_request_permission is False
        assert monitor.push_status is PushStatus.UNAVAILABLE

    def test_default_permission_can_be_requested(self, manager, platform):
        platform.permission_status.return_value = PermissionStatus.DEFAULT

        manager.check_support()

        assert manager.can_request_permission is True

    def test_denied_published(self, manager, platform, monitor):
        platform.permission_status.return_value = PermissionStatus.DENIED

        manager.check_support()

        assert monitor.push_status is PushStatus.DENIED


class TestRequestPermission:
    """Tests for the permission flow."""

    @pytest.mark.asyncio
    async def test_unsupported_raises(self, manager, platform):
        platform.is_supported.return_value = False
        manager.check_support()

        with pytest.raises(PushUnsupportedError):
            await manager.request_permission()

    @pytest.mark.asyncio
    async def test_denied_never_prompts_or_registers(self, manager, platform, mock_api_client):
        platform.permission_status.return_value = PermissionStatus.DENIED
        manager.check_support()

        with pytest.raises(PermissionDeniedError):
            await manager.request_permission()

        platform.request_permission.assert_not_called()
        mock_api_client.register_push_token.assert_not_called()
        assert manager.subscription_active is False
        assert "permission denied" in manager.error

    @pytest.mark.asyncio
    async def test_default_then_granted_registers(self, manager, platform, mock_api_client, monitor):
        platform.permission_status.return_value = PermissionStatus.DEFAULT
        manager.check_support()

        assert await manager.request_permission() is True

        platform.request_permission.assert_awaited_once()
        kwargs = mock_api_client.register_push_token.call_args.kwargs
        assert kwargs["token"] == "push-token"
        assert kwargs["device_id"] == DEVICE_ID
        assert kwargs["device_type"] == "web"
        assert kwargs["user_agent"] == "pytest"
        assert kwargs["provider_type"] == "service_provider"
        assert manager.subscription_active is True
        assert manager.preferences.enabled is True
        assert manager.is_enabled is True
        assert monitor.push_status is PushStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_prompt_denied(self, manager, platform, mock_api_client):
        platform.permission_status.return_value = PermissionStatus.DEFAULT
        platform.request_permission.return_value = PermissionStatus.DENIED
        manager.check_support()

        with pytest.raises(PermissionDeniedError):
            await manager.request_permission()

        mock_api_client.register_push_token.assert_not_called()
        assert manager.permission_status is PermissionStatus.DENIED

    @pytest.mark.asyncio
    async def test_prompt_dismissed(self, manager, platform, mock_api_client):
        platform.permission_status.return_value = PermissionStatus.DEFAULT
        platform.request_permission.return_value = PermissionStatus.DEFAULT
        manager.check_support()

        assert await manager.request_permission() is False
        mock_api_client.register_push_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_registration_failure_propagates(self, manager, mock_api_client):
        manager.check_support()
        mock_api_client.register_push_token.side_effect = ApiError("Invalid token", status_code=400)

        with pytest.raises(ApiError):
            await manager.request_permission()

        assert manager.subscription_active is False
        assert manager.error == "Invalid token"


class TestEnsureToken:
    """Tests for token acquisition and registration."""

    @pytest.mark.asyncio
    async def test_missing_token(self, manager, platform):
        platform.obtain_token.return_value = None

        with pytest.raises(TokenAcquisitionError):
            await manager.ensure_token()

        assert manager.subscription_active is False

    @pytest.mark.asyncio
    async def test_same_token_not_reregistered(self, manager, mock_api_client):
        await manager.ensure_token()
        await manager.ensure_token()

        assert mock_api_client.register_push_token.await_count == 1

    @pytest.mark.asyncio
    async def test_rotated_token_registered(self, manager, platform, mock_api_client, token_store):
        await manager.ensure_token()
        platform.obtain_token.return_value = "rotated-token"

        await manager.ensure_token()

        assert mock_api_client.register_push_token.await_count == 2
        assert manager.token == "rotated-token"
        assert token_store.get_token(DEVICE_ID) == "rotated-token"


class TestDisable:
    """Tests for turning push off."""

    @pytest.mark.asyncio
    async def test_disable_revokes_and_clears(self, manager, mock_api_client, platform, token_store):
        await manager.ensure_token()

        await manager.disable()

        mock_api_client.revoke_push_token.assert_awaited_once_with("push-token")
        platform.revoke_token.assert_awaited_once()
        assert manager.token is None
        assert manager.subscription_active is False
        assert manager.preferences.enabled is False
        assert token_store.get_token(DEVICE_ID) is None

    @pytest.mark.asyncio
    async def test_disable_tolerates_failures(self, manager, mock_api_client, platform):
        await manager.ensure_token()
        mock_api_client.revoke_push_token.side_effect = ApiError("Server error", status_code=500)
        platform.revoke_token.side_effect = RuntimeError("provider offline")
        mock_api_client.update_preferences.side_effect = ApiError("Server error", status_code=500)

        await manager.disable()

        assert manager.subscription_active is False
        assert manager.token is None

    @pytest.mark.asyncio
    async def test_disable_tolerates_non_json_bad_request(
        self, platform, monitor, memory_store, token_store, mock_server_url, make_response
    ):
        api_client = NotificationApiClient(mock_server_url, "tok")
        manager = SubscriptionManager(
            api_client, platform, monitor, memory_store, token_store, DEVICE_ID, "customer"
        )
        html_400 = make_response(400, ValueError("Expecting value"), content_type="text/html")

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=html_400)

            await manager.disable()

        assert manager.subscription_active is False
        assert manager.preferences.enabled is False
        args, _ = mock_client.request.call_args
        assert args[0] == "PUT"

    @pytest.mark.asyncio
    async def test_inactive_before_network_calls(self, manager, mock_api_client, monitor):
        await manager.update_preferences(enabled=True)
        await manager.ensure_token()
        seen = []

        async def revoke(token):
            seen.append((manager.subscription_active, monitor.push_status))

        mock_api_client.revoke_push_token.side_effect = revoke

        await manager.disable()

        assert seen == [(False, PushStatus.UNAVAILABLE)]


class TestInitialize:
    """Tests for startup."""

    @pytest.mark.asyncio
    async def test_registers_when_granted_and_enabled(self, manager, mock_api_client):
        mock_api_client.get_preferences.return_value = {"enabled": True}

        await manager.initialize()

        assert manager.is_enabled is True
        mock_api_client.register_push_token.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_does_not_register_when_disabled(self, manager, mock_api_client):
        await manager.initialize()

        mock_api_client.register_push_token.assert_not_called()
        assert manager.is_enabled is False

    @pytest.mark.asyncio
    async def test_registration_error_stored(self, manager, mock_api_client):
        mock_api_client.get_preferences.return_value = {"enabled": True}
        mock_api_client.register_push_token.side_effect = ApiError("Server error", status_code=500)

        await manager.initialize()

        assert manager.error == "Server error"
        assert manager.subscription_active is False

    @pytest.mark.asyncio
    async def test_restores_mirrored_token(self, manager, token_store):
        token_store.store_token(DEVICE_ID, "old-token")

        await manager.initialize()

        assert manager.token == "old-token"

    @pytest.mark.asyncio
    async def test_retry_setup(self, manager, mock_api_client):
        mock_api_client.register_push_token.side_effect = ApiError("Server error", status_code=500)
        assert await manager.retry_setup() is False
        assert manager.error == "Server error"

        mock_api_client.register_push_token.side_effect = None
        assert await manager.retry_setup() is True
        assert manager.error is None


class TestPreferences:
    """Tests for preference loading and updating."""

    @pytest.mark.asyncio
    async def test_server_preferred(self, manager, mock_api_client, memory_store):
        memory_store.set(PREFERENCES_KEY, json.dumps({"enabled": False, "soundEnabled": False}))
        mock_api_client.get_preferences.return_value = {"enabled": True, "soundEnabled": True}

        prefs = await manager.load_preferences()

        assert prefs.enabled is True
        assert prefs.sound_enabled is True
        assert json.loads(memory_store.get(PREFERENCES_KEY))["soundEnabled"] is True

    @pytest.mark.asyncio
    async def test_local_mirror_when_server_fails(self, manager, mock_api_client, memory_store):
        memory_store.set(PREFERENCES_KEY, json.dumps({"enabled": True, "jobRequests": False}))
        mock_api_client.get_preferences.side_effect = ApiError("offline")

        prefs = await manager.load_preferences()

        assert prefs.enabled is True
        assert prefs.job_requests is False

    @pytest.mark.asyncio
    async def test_invalid_server_preferences_ignored(self, manager, mock_api_client):
        mock_api_client.get_preferences.return_value = {"quietHours": {"startTime": "25:99"}}

        prefs = await manager.load_preferences()

        assert prefs == AlertPreferences(provider_type="service_provider")

    @pytest.mark.asyncio
    async def test_defaults(self, manager, memory_store):
        prefs = await manager.load_preferences()

        assert prefs.enabled is False
        assert prefs.provider_type == "service_provider"
        assert memory_store.get(PREFERENCES_KEY) is None

    @pytest.mark.asyncio
    async def test_update_syncs_camel_case(self, manager, mock_api_client):
        assert await manager.update_preferences(sound_enabled=False, quiet_hours={"enabled": True}) is True

        sent = mock_api_client.update_preferences.call_args.args[0]
        assert sent["soundEnabled"] is False
        assert sent["quietHours"]["enabled"] is True
        assert sent["quietHours"]["startTime"] == "22:00"

    @pytest.mark.asyncio
    async def test_update_kept_locally_when_server_fails(self, manager, mock_api_client, memory_store):
        mock_api_client.update_preferences.side_effect = ApiError("offline")

        assert await manager.update_preferences(payment_updates=False) is False

        assert manager.preferences.payment_updates is False
        assert json.loads(memory_store.get(PREFERENCES_KEY))["paymentUpdates"] is False

    @pytest.mark.asyncio
    async def test_update_unknown_key(self, manager, mock_api_client):
        with pytest.raises(ValueError):
            await manager.update_preferences(volume=11)

        mock_api_client.update_preferences.assert_not_called()
