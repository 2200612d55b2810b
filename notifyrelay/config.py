"""
Relay configuration module.

Manages connection configuration for the notification relay: server URL,
access token, device identity and logging. Configuration is loaded from a
YAML file in the platform config directory and can be overridden with
environment variables.

Behavioural settings that the user changes at runtime (fallback polling
configuration, alert preferences) are not stored here; they live in the
key-value store (see local_store).
"""

import os
import re
import uuid
from pathlib import Path
from typing import Optional

import yaml
from platformdirs import user_config_dir, user_data_dir


# ============================================================================
# Constants
# ============================================================================

APP_NAME = "notifyrelay"
APP_AUTHOR = "NotifyRelay"
CONFIG_FILENAME = "relay-config.yaml"

# Environment variable names
ENV_SERVER_URL = "NOTIFYRELAY_SERVER_URL"
ENV_ACCESS_TOKEN = "NOTIFYRELAY_ACCESS_TOKEN"
ENV_LOG_LEVEL = "NOTIFYRELAY_LOG_LEVEL"
ENV_CONFIG_PATH = "NOTIFYRELAY_CONFIG_PATH"
ENV_DATA_DIR = "NOTIFYRELAY_DATA_DIR"

# Default values
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_PROVIDER_TYPE = "service_provider"
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds

VALID_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR"])
VALID_PROVIDER_TYPES = frozenset(["service_provider", "parts_provider", "customer"])

# URL validation regex
URL_PATTERN = re.compile(
    r"^https?://"  # http:// or https://
    r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|"  # domain
    r"localhost|"  # localhost
    r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"  # ...or ip
    r"(?::\d+)?"  # optional port
    r"(?:/?|[/?]\S+)$",
    re.IGNORECASE,
)


# ============================================================================
# Exceptions
# ============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    pass


# ============================================================================
# Helper Functions
# ============================================================================


def get_default_config_dir() -> Path:
    """
    Get the default configuration directory for the current platform.

    Returns:
        Path to the platform-appropriate config directory
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def get_default_config_path() -> Path:
    """
    Get the default configuration file path.

    Returns:
        Path to the default config file
    """
    return get_default_config_dir() / CONFIG_FILENAME


def get_default_data_dir() -> Path:
    """
    Get the data directory used for local state (key-value store, token).

    Honors NOTIFYRELAY_DATA_DIR, otherwise uses the platform data directory.

    Returns:
        Path to the data directory
    """
    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir)
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


# ============================================================================
# RelayConfig Class
# ============================================================================


class RelayConfig:
    """
    Relay configuration manager.

    Configuration sources (in priority order):
    1. Environment variables
    2. Configuration file
    3. Default values

    Attributes:
        server_url: Notification server base URL
        access_token: Bearer token for the notification API
        device_id: Stable identifier of this device (push token upsert key)
        provider_type: Role of the signed-in user (service_provider, ...)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config_dir: Optional[Path] = None,
    ):
        """
        Initialize relay configuration.

        Args:
            config_path: Explicit path to config file (takes precedence)
            config_dir: Directory containing config file
        """
        if config_path:
            self._config_path = Path(config_path)
            self._config_dir = self._config_path.parent
        elif config_dir:
            self._config_dir = Path(config_dir)
            self._config_path = self._config_dir / CONFIG_FILENAME
        else:
            env_path = os.environ.get(ENV_CONFIG_PATH)
            if env_path:
                self._config_path = Path(env_path)
                self._config_dir = self._config_path.parent
            else:
                self._config_dir = get_default_config_dir()
                self._config_path = self._config_dir / CONFIG_FILENAME

        self._server_url: str = ""
        self._access_token: str = ""
        self._device_id: str = ""
        self._device_id_saved = False
        self._provider_type: str = DEFAULT_PROVIDER_TYPE
        self._log_level: str = DEFAULT_LOG_LEVEL
        self._request_timeout: float = DEFAULT_REQUEST_TIMEOUT

        self._load()

    @property
    def config_path(self) -> Path:
        """Get the configuration file path."""
        return self._config_path

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory."""
        return self._config_dir

    # -------------------------------------------------------------------------
    # Configuration Properties
    # -------------------------------------------------------------------------

    @property
    def server_url(self) -> str:
        """Get the server URL."""
        return os.environ.get(ENV_SERVER_URL, self._server_url)

    @server_url.setter
    def server_url(self, value: str) -> None:
        self._server_url = value

    @property
    def access_token(self) -> str:
        """Get the API access token."""
        return os.environ.get(ENV_ACCESS_TOKEN, self._access_token)

    @access_token.setter
    def access_token(self, value: str) -> None:
        self._access_token = value

    @property
    def device_id(self) -> str:
        """
        Get the device identifier, generating one on first access.

        The generated id is only persisted by save() or ensure_device_id().
        """
        if not self._device_id:
            self._device_id = f"dev_{uuid.uuid4().hex}"
        return self._device_id

    @device_id.setter
    def device_id(self, value: str) -> None:
        self._device_id = value

    @property
    def provider_type(self) -> str:
        """Get the provider type of the signed-in user."""
        return self._provider_type

    @provider_type.setter
    def provider_type(self, value: str) -> None:
        self._provider_type = value

    @property
    def log_level(self) -> str:
        """Get the log level."""
        return os.environ.get(ENV_LOG_LEVEL, self._log_level)

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._log_level = value

    @property
    def request_timeout(self) -> float:
        """Get the HTTP request timeout in seconds."""
        return self._request_timeout

    @request_timeout.setter
    def request_timeout(self, value: float) -> None:
        self._request_timeout = value

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        """Check if the relay has a server URL and an access token."""
        return bool(self.server_url and self.access_token)

    # -------------------------------------------------------------------------
    # Configuration Management
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        """Load configuration from file."""
        if not self._config_path.exists():
            return

        try:
            with open(self._config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file: {e}")

        self._server_url = data.get("server_url", "")
        self._access_token = data.get("access_token", "")
        self._device_id = data.get("device_id", "")
        self._device_id_saved = bool(self._device_id)
        self._provider_type = data.get("provider_type", DEFAULT_PROVIDER_TYPE)
        self._log_level = data.get("log_level", DEFAULT_LOG_LEVEL)
        self._request_timeout = float(
            data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
        )

    def save(self) -> None:
        """Save configuration to file."""
        self._config_dir.mkdir(parents=True, exist_ok=True)

        data = {
            "server_url": self._server_url,
            "access_token": self._access_token,
            "device_id": self.device_id,
            "provider_type": self._provider_type,
            "log_level": self._log_level,
            "request_timeout": self._request_timeout,
        }

        with open(self._config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
        self._device_id_saved = True

    def ensure_device_id(self) -> str:
        """
        Get the device identifier, writing the config file if the id has
        never been saved.

        Raises:
            OSError: If the config file cannot be written
        """
        if not self._device_id_saved:
            self.save()
        return self._device_id

    def validate(self) -> None:
        """
        Validate the current configuration.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        if self.server_url and not URL_PATTERN.match(self.server_url):
            raise ConfigValidationError(
                f"Invalid server_url format: {self.server_url}"
            )

        if self.provider_type not in VALID_PROVIDER_TYPES:
            raise ConfigValidationError(
                f"Invalid provider_type '{self.provider_type}'. "
                f"Must be one of: {sorted(VALID_PROVIDER_TYPES)}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigValidationError(
                f"Invalid log_level '{self.log_level}'. "
                f"Must be one of: {sorted(VALID_LOG_LEVELS)}"
            )

        if self.request_timeout <= 0:
            raise ConfigValidationError(
                f"request_timeout must be positive, got: {self.request_timeout}"
            )
