"""
Push subscription lifecycle.

Manages the push channel for this device:
- Detects platform support and permission state
- Requests permission and obtains the push credential token
- Registers / revokes the token with the server
- Loads and updates the user's alert preferences (server + local mirror)

Feeds permission and the enabled flag into the ChannelHealthMonitor so the
fallback poller knows when push is unavailable.
"""

import logging
import time
from typing import Any, Optional, Protocol

from notifyrelay.api_client import ApiError, NotificationApiClient
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.local_store import (
    PREFERENCES_KEY,
    KeyValueStore,
    load_model,
    save_model,
)
from notifyrelay.models import AlertPreferences, PermissionStatus
from notifyrelay.token_store import TokenStore

logger = logging.getLogger("notifyrelay.subscription")


DEFAULT_DEVICE_TYPE = "web"


# ============================================================================
# Exceptions
# ============================================================================


class SubscriptionError(Exception):
    """Base exception for push subscription failures."""

    pass


class PushUnsupportedError(SubscriptionError):
    """Raised when the platform cannot deliver push notifications."""

    pass


class PermissionDeniedError(SubscriptionError):
    """Raised when push permission is (or becomes) denied."""

    pass


class TokenAcquisitionError(SubscriptionError):
    """Raised when the push credential provider returns no token."""

    pass


# ============================================================================
# Platform Protocol
# ============================================================================


class PushPlatform(Protocol):
    """Push credential provider and permission prompt."""

    def is_supported(self) -> bool:
        ...

    def permission_status(self) -> PermissionStatus:
        ...

    async def request_permission(self) -> PermissionStatus:
        ...

    async def obtain_token(self) -> Optional[str]:
        ...

    async def revoke_token(self) -> None:
        ...


class NullPushPlatform:
    """Platform without push support (headless / console clients)."""

    def is_supported(self) -> bool:
        return False

    def permission_status(self) -> PermissionStatus:
        return PermissionStatus.UNSUPPORTED

    async def request_permission(self) -> PermissionStatus:
        return PermissionStatus.UNSUPPORTED

    async def obtain_token(self) -> Optional[str]:
        return None

    async def revoke_token(self) -> None:
        return None


# ============================================================================
# SubscriptionManager Class
# ============================================================================


class SubscriptionManager:
    """
    Push permission, token registration and alert preferences.

    Invariant: ``subscription_active`` is True only while a non-empty token
    is registered with the server.
    """

    def __init__(
        self,
        api_client: NotificationApiClient,
        platform: PushPlatform,
        monitor: ChannelHealthMonitor,
        kv_store: KeyValueStore,
        token_store: TokenStore,
        device_id: str,
        provider_type: str,
        device_type: str = DEFAULT_DEVICE_TYPE,
        user_agent: str = "",
    ):
        """
        Initialize the subscription manager.

        Args:
            api_client: API client for token and preference endpoints
            platform: Push credential provider
            monitor: Channel health monitor to publish push state to
            kv_store: Local mirror for preferences
            token_store: Encrypted local mirror for the token
            device_id: Identifier of this device (upsert key on the server)
            provider_type: Role of the signed-in user
            device_type: Device type reported to the server
            user_agent: User agent reported to the server
        """
        self._api_client = api_client
        self._platform = platform
        self._monitor = monitor
        self._kv_store = kv_store
        self._token_store = token_store
        self._device_id = device_id
        self._provider_type = provider_type
        self._device_type = device_type
        self._user_agent = user_agent

        self._supported = False
        self._permission = PermissionStatus.UNSUPPORTED
        self._token: Optional[str] = None
        self._active = False
        self._preferences = AlertPreferences(provider_type=provider_type)
        self._error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Observables
    # -------------------------------------------------------------------------

    @property
    def permission_status(self) -> PermissionStatus:
        return self._permission

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def subscription_active(self) -> bool:
        return self._active and bool(self._token)

    @property
    def preferences(self) -> AlertPreferences:
        return self._preferences

    @property
    def is_enabled(self) -> bool:
        """Push alerts are on and a token is registered."""
        return self._preferences.enabled and self.subscription_active

    @property
    def can_request_permission(self) -> bool:
        return self._supported and self._permission is PermissionStatus.DEFAULT

    @property
    def error(self) -> Optional[str]:
        return self._error

    def _publish(self) -> None:
        self._monitor.set_push_state(self._permission, self.is_enabled)

    def _fail(self, error: SubscriptionError) -> SubscriptionError:
        self._error = str(error)
        logger.warning(f"Push subscription error: {error}")
        return error

    # -------------------------------------------------------------------------
    # Support and Setup
    # -------------------------------------------------------------------------

    def check_support(self) -> PermissionStatus:
        """Read platform support and permission and publish them."""
        self._supported = self._platform.is_supported()
        if self._supported:
            self._permission = self._platform.permission_status()
        else:
            self._permission = PermissionStatus.UNSUPPORTED
        logger.debug(f"Push support: supported={self._supported} permission={self._permission.value}")
        self._publish()
        return self._permission

    async def initialize(self) -> None:
        """
        Check support, load preferences and restore the token.

        Registration failures are stored in ``error`` and not raised.
        """
        self.check_support()
        await self.load_preferences()

        mirrored = self._token_store.get_token(self._device_id)
        if mirrored:
            self._token = mirrored

        if self._permission is PermissionStatus.GRANTED and self._preferences.enabled:
            try:
                await self.ensure_token()
            except (SubscriptionError, ApiError) as e:
                self._error = str(e)
                logger.warning(f"Push setup failed: {e}")
        self._publish()

    async def request_permission(self) -> bool:
        """
        Ask for push permission and register a token when granted.

        Returns:
            True if permission is granted and a token is registered,
            False if the prompt was dismissed

        Raises:
            PushUnsupportedError: If the platform has no push support
            PermissionDeniedError: If permission is or becomes denied
            TokenAcquisitionError: If no token could be obtained
            ApiError: If token registration fails
        """
        if not self._supported or self._permission is PermissionStatus.UNSUPPORTED:
            raise self._fail(PushUnsupportedError("Push notifications are not supported on this device"))

        if self._permission is PermissionStatus.DENIED:
            raise self._fail(PermissionDeniedError(
                "Notification permission denied. Enable notifications in your settings."
            ))

        if self._permission is PermissionStatus.DEFAULT:
            self._permission = await self._platform.request_permission()
            self._publish()

            if self._permission is PermissionStatus.DENIED:
                raise self._fail(PermissionDeniedError("Notification permission denied"))
            if self._permission is not PermissionStatus.GRANTED:
                logger.info("Notification permission prompt dismissed")
                return False

        await self.ensure_token()
        if not self._preferences.enabled:
            await self.update_preferences(enabled=True)
        self._publish()
        return True

    async def ensure_token(self) -> str:
        """
        Obtain the push token and register it unless already active.

        Raises:
            TokenAcquisitionError: If the provider returns no token
            ApiError: If registration fails
        """
        token = await self._platform.obtain_token()
        if not token:
            self._active = False
            self._publish()
            raise self._fail(TokenAcquisitionError("Failed to get push notification token"))

        if self._active and token == self._token:
            logger.debug("Push token unchanged, skipping registration")
            return token

        try:
            await self._api_client.register_push_token(
                token=token,
                device_id=self._device_id,
                device_type=self._device_type,
                user_agent=self._user_agent,
                provider_type=self._provider_type,
                timestamp=int(time.time() * 1000),
            )
        except ApiError as e:
            self._active = False
            self._error = str(e)
            self._publish()
            raise

        self._token = token
        self._active = True
        self._error = None
        self._token_store.store_token(self._device_id, token)
        logger.info("Push token registered")
        self._publish()
        return token

    async def disable(self) -> None:
        """
        Turn push alerts off.

        Marks the subscription inactive before any network call; server and
        platform failures are logged and not raised.
        """
        token = self._token
        self._active = False
        self._publish()

        if token:
            try:
                await self._api_client.revoke_push_token(token)
            except ApiError as e:
                logger.warning(f"Failed to revoke push token on server: {e}")
        try:
            await self._platform.revoke_token()
        except Exception as e:
            logger.warning(f"Failed to revoke push token on platform: {e}")

        self._token = None
        self._token_store.delete_token(self._device_id)
        await self.update_preferences(enabled=False)
        logger.info("Push notifications disabled")

    async def retry_setup(self) -> bool:
        """
        Clear the error and set push up again.

        Returns:
            True if a token is registered afterwards
        """
        self._error = None
        self.check_support()
        if self._permission is not PermissionStatus.GRANTED:
            return False
        try:
            await self.ensure_token()
        except (SubscriptionError, ApiError) as e:
            self._error = str(e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def load_preferences(self) -> AlertPreferences:
        """
        Load preferences: server first, then the local mirror, then defaults.
        """
        loaded: Optional[AlertPreferences] = None
        try:
            remote = await self._api_client.get_preferences()
            if remote:
                loaded = AlertPreferences.model_validate(remote)
        except ApiError as e:
            logger.debug(f"Could not load preferences from server: {e}")
        except ValueError as e:
            logger.debug(f"Discarding invalid server preferences: {e}")

        if loaded is None:
            loaded = load_model(self._kv_store, PREFERENCES_KEY, AlertPreferences)

        if loaded is None:
            loaded = AlertPreferences(provider_type=self._provider_type)
        else:
            save_model(self._kv_store, PREFERENCES_KEY, loaded, by_alias=True)

        self._preferences = loaded
        self._publish()
        return loaded

    async def update_preferences(self, **changes: Any) -> bool:
        """
        Merge preference changes, mirror them locally and sync to the server.

        Args:
            **changes: Preference fields (snake_case or camelCase);
                ``quiet_hours`` may be a partial mapping

        Returns:
            True if the server accepted the update; False if only the local
            mirror was updated

        Raises:
            ValueError: If a key is unknown or a value is invalid
        """
        updated = self._preferences.merged(changes)
        self._preferences = updated
        save_model(self._kv_store, PREFERENCES_KEY, updated, by_alias=True)
        self._publish()

        try:
            await self._api_client.update_preferences(updated.model_dump(by_alias=True))
        except ApiError as e:
            logger.warning(f"Failed to sync preferences to server: {e}")
            return False
        return True
