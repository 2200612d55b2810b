"""
Notification API client for server communication.

Provides the HTTP client used by the fallback poller and the subscription
manager: notification polling, mark-read, push token registration and
revocation, and alert preference sync. Maps HTTP status codes onto the
relay's error taxonomy.
"""

import logging
from typing import Any, Optional

import httpx

from notifyrelay import __version__
from notifyrelay.models import POLL_PAGE_SIZE

logger = logging.getLogger("notifyrelay.api")


# ============================================================================
# Constants
# ============================================================================

API_VERSION = "v1"
API_BASE_PATH = f"/api/{API_VERSION}"
DEFAULT_TIMEOUT = 30.0  # seconds
USER_AGENT = f"NotifyRelay/{__version__}"


# ============================================================================
# Exceptions
# ============================================================================


class ApiError(Exception):
    """Base exception for API errors. Retried with backoff by the poller."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionError(ApiError):
    """Raised when connection to server fails or times out."""

    pass


class AuthExpiredError(ApiError):
    """Raised on 401: the session expired and needs re-authentication."""

    pass


class ForbiddenError(ApiError):
    """Raised on 403: the user may not access notifications."""

    pass


class MalformedResponseError(ApiError):
    """Raised when a response has an unexpected content type or shape."""

    pass


# ============================================================================
# NotificationApiClient Class
# ============================================================================


class NotificationApiClient:
    """
    HTTP client for the notification API.

    Attributes:
        server_url: Base URL of the notification server
    """

    def __init__(
        self,
        server_url: str,
        access_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the API client.

        Args:
            server_url: Base URL of the notification server
            access_token: Bearer token for authenticated requests
            timeout: Request timeout in seconds

        Raises:
            ValueError: If server_url is empty
        """
        if not server_url:
            raise ValueError("server_url is required")

        self._server_url = server_url.rstrip("/")
        self._timeout = timeout

        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self._client = httpx.AsyncClient(
            base_url=self._server_url,
            headers=headers,
            timeout=timeout,
        )

    @property
    def server_url(self) -> str:
        """Get the server URL."""
        return self._server_url

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, mapping transport failures to ConnectionError.

        Cancellation (asyncio.CancelledError) propagates unchanged.
        """
        try:
            return await self._client.request(method, f"{API_BASE_PATH}{path}", **kwargs)
        except httpx.ConnectError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Connection timed out: {e}")
        except httpx.TransportError as e:
            raise ConnectionError(f"Transport error: {e}")

    @staticmethod
    def _raise_for_auth(response: httpx.Response) -> None:
        """Raise the auth errors shared by every endpoint."""
        if response.status_code == 401:
            raise AuthExpiredError("Authentication expired", status_code=401)
        if response.status_code == 403:
            raise ForbiddenError("Insufficient permissions", status_code=403)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """
        Decode a JSON body.

        Raises:
            MalformedResponseError: If the body is not JSON
        """
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise MalformedResponseError(
                f"Unexpected content type: {content_type or 'none'}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON body: {e}", status_code=response.status_code
            )

    @staticmethod
    def _error_detail(response: httpx.Response, default: str) -> str:
        """Server error detail from a JSON object body, else ``default``."""
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict) and body.get("detail"):
            return str(body["detail"])
        return default

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def fetch_notifications(
        self,
        since: int = 0,
        limit: int = POLL_PAGE_SIZE,
    ) -> Optional[list[dict[str, Any]]]:
        """
        Fetch notifications newer than a cursor.

        Args:
            since: Cursor (epoch ms of the newest notification already seen)
            limit: Maximum number of notifications to return

        Returns:
            List of notification objects, or None when the server answers
            304 Not Modified

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            MalformedResponseError: If the body is not a JSON array
            ConnectionError: If connection to server fails
            ApiError: On any other unexpected status
        """
        response = await self._request(
            "GET",
            "/notifications",
            params={"limit": str(limit), "since": str(max(since, 0))},
        )

        if response.status_code == 304:
            return None

        self._raise_for_auth(response)

        if response.status_code != 200:
            raise ApiError(
                f"Notification poll failed with status {response.status_code}",
                status_code=response.status_code,
            )

        body = self._json(response)
        if not isinstance(body, list):
            raise MalformedResponseError(
                f"Expected a JSON array, got {type(body).__name__}",
                status_code=200,
            )
        return body

    async def mark_read(self, notification_id: str) -> None:
        """
        Mark a notification as read on the server.

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            ConnectionError: If connection to server fails
            ApiError: If the notification was not found or the call failed
        """
        response = await self._request("PUT", f"/notifications/{notification_id}/read")

        self._raise_for_auth(response)

        if response.status_code in (200, 204):
            return
        elif response.status_code == 404:
            raise ApiError("Notification not found", status_code=404)
        else:
            raise ApiError(
                f"Mark read failed with status {response.status_code}",
                status_code=response.status_code,
            )

    # -------------------------------------------------------------------------
    # Push Token
    # -------------------------------------------------------------------------

    async def register_push_token(
        self,
        token: str,
        device_id: str,
        device_type: str,
        user_agent: str,
        provider_type: str,
        timestamp: int,
    ) -> dict[str, Any]:
        """
        Register (upsert) the push credential token for this device.

        Args:
            token: Push credential token
            device_id: Device identifier (upsert key)
            device_type: Device type (e.g. "web", "desktop")
            user_agent: Client user agent
            provider_type: Role of the signed-in user
            timestamp: Registration time (epoch ms)

        Returns:
            Server response body (empty dict if none)

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            ConnectionError: If connection to server fails
            ApiError: If registration fails
        """
        payload = {
            "token": token,
            "deviceId": device_id,
            "deviceType": device_type,
            "userAgent": user_agent,
            "providerType": provider_type,
            "timestamp": timestamp,
        }

        response = await self._request("POST", "/notifications/fcm-token", json=payload)

        self._raise_for_auth(response)

        if response.status_code in (200, 201):
            try:
                return response.json()
            except ValueError:
                return {}
        elif response.status_code == 204:
            return {}
        elif response.status_code == 400:
            detail = self._error_detail(response, "Invalid token registration")
            raise ApiError(detail, status_code=400)
        else:
            raise ApiError(
                f"Token registration failed with status {response.status_code}",
                status_code=response.status_code,
            )

    async def revoke_push_token(self, token: str) -> None:
        """
        Delete the push credential token on the server.

        A 404 (already gone) counts as success.

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            ConnectionError: If connection to server fails
            ApiError: If revocation fails
        """
        response = await self._request(
            "DELETE", "/notifications/fcm-token", json={"token": token}
        )

        self._raise_for_auth(response)

        if response.status_code in (200, 204, 404):
            return
        raise ApiError(
            f"Token revocation failed with status {response.status_code}",
            status_code=response.status_code,
        )

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def get_preferences(self) -> Optional[dict[str, Any]]:
        """
        Get the user's push alert preferences.

        Returns:
            The ``preferences.pwaNotifications`` object, or None if the
            server has none stored

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            MalformedResponseError: If the body is not JSON
            ConnectionError: If connection to server fails
            ApiError: On any other unexpected status
        """
        response = await self._request("GET", "/users/me/notifications/preferences")

        self._raise_for_auth(response)

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ApiError(
                f"Get preferences failed with status {response.status_code}",
                status_code=response.status_code,
            )

        body = self._json(response)
        if not isinstance(body, dict):
            raise MalformedResponseError("Expected a JSON object", status_code=200)
        preferences = body.get("preferences") or {}
        return preferences.get("pwaNotifications")

    async def update_preferences(self, preferences: dict[str, Any]) -> None:
        """
        Replace the user's push alert preferences.

        Args:
            preferences: camelCase preference object

        Raises:
            AuthExpiredError: On 401
            ForbiddenError: On 403
            ConnectionError: If connection to server fails
            ApiError: If the update fails
        """
        response = await self._request(
            "PUT",
            "/users/me/notifications/preferences",
            json={"pwaNotifications": preferences},
        )

        self._raise_for_auth(response)

        if response.status_code in (200, 204):
            return
        elif response.status_code == 400:
            detail = self._error_detail(response, "Invalid preferences")
            raise ApiError(detail, status_code=400)
        else:
            raise ApiError(
                f"Update preferences failed with status {response.status_code}",
                status_code=response.status_code,
            )

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "NotificationApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
