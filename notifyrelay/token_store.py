"""
Local mirror of the push credential token.

The push token registered with the server is mirrored locally so that it
can be revoked after a restart (and deregistered from the server) even when
the push platform no longer hands it out.

Design:
- Tokens are encrypted using Fernet symmetric encryption
- One file per device id
- Master key is generated automatically when the first token is stored
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from notifyrelay.config import get_default_data_dir

logger = logging.getLogger("notifyrelay.token_store")


class TokenStore:
    """
    Encrypted storage for push credential tokens.

    Directory structure:
        {data_dir}/
            master.key          # Fernet encryption key (auto-generated)
            tokens/
                dev_xxx.json    # Encrypted token for device dev_xxx

    Usage:
        >>> store = TokenStore()
        >>> store.store_token("dev_xxx", "fcm-token")
        >>> store.get_token("dev_xxx")
        'fcm-token'
    """

    MASTER_KEY_FILE = "master.key"
    TOKENS_DIR = "tokens"

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize the token store.

        Args:
            base_dir: Base directory (defaults to the platform data dir)
        """
        self.base_dir = Path(base_dir) if base_dir else get_default_data_dir()
        self.tokens_dir = self.base_dir / self.TOKENS_DIR
        self._fernet: Optional[Fernet] = None

    def _ensure_directories(self) -> None:
        """Create the storage directories with owner-only permissions."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.tokens_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.base_dir, 0o700)
            os.chmod(self.tokens_dir, 0o700)
        except OSError:
            pass

    @property
    def master_key_path(self) -> Path:
        """Path to master key file."""
        return self.base_dir / self.MASTER_KEY_FILE

    def has_master_key(self) -> bool:
        """Check if master key exists."""
        return self.master_key_path.exists()

    def _load_or_create_master_key(self) -> bytes:
        """Load the master key, generating it on first use."""
        self._ensure_directories()

        if self.master_key_path.exists():
            return self.master_key_path.read_bytes()

        key = Fernet.generate_key()
        self.master_key_path.write_bytes(key)
        try:
            os.chmod(self.master_key_path, 0o600)
        except OSError:
            pass
        return key

    def _get_fernet(self) -> Fernet:
        """Get or create Fernet cipher."""
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_master_key())
        return self._fernet

    def _token_file_path(self, device_id: str) -> Path:
        """Get path to the token file for a device."""
        safe_id = device_id.replace("/", "_").replace("\\", "_")
        return self.tokens_dir / f"{safe_id}.json"

    def store_token(self, device_id: str, token: str) -> None:
        """
        Store the push token for a device.

        Args:
            device_id: Device identifier
            token: Push credential token

        Raises:
            ValueError: If device_id or token is empty
        """
        if not device_id:
            raise ValueError("device_id is required")
        if not token:
            raise ValueError("token is required")

        self._ensure_directories()
        data = {
            "device_id": device_id,
            "token": token,
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        encrypted = self._get_fernet().encrypt(json.dumps(data).encode("utf-8"))

        file_path = self._token_file_path(device_id)
        file_path.write_bytes(encrypted)
        try:
            os.chmod(file_path, 0o600)
        except OSError:
            pass

    def _load_token_data(self, device_id: str) -> Optional[Dict[str, Any]]:
        """Load and decrypt the token record, None if missing or unreadable."""
        file_path = self._token_file_path(device_id)
        if not file_path.exists():
            return None

        try:
            decrypted = self._get_fernet().decrypt(file_path.read_bytes())
            return json.loads(decrypted.decode("utf-8"))
        except (InvalidToken, ValueError, OSError) as e:
            logger.debug(f"Discarding unreadable token file {file_path}: {e}")
            return None

    def get_token(self, device_id: str) -> Optional[str]:
        """
        Retrieve the push token for a device.

        Returns:
            Token or None if not stored
        """
        data = self._load_token_data(device_id)
        if data is None:
            return None
        return data.get("token")

    def delete_token(self, device_id: str) -> bool:
        """
        Delete the stored token for a device.

        Returns:
            True if a token file was removed
        """
        file_path = self._token_file_path(device_id)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True
