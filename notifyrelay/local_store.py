"""
Durable local key-value storage.

Fallback configuration and alert preferences are serialized as JSON under
fixed keys and must survive restarts. Storage itself is pluggable through
the KeyValueStore protocol; JsonFileStore keeps one JSON file per key in the
platform data directory, MemoryStore is used for tests and embedding.

Unreadable or invalid stored values are discarded silently and callers fall
back to defaults.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from notifyrelay.config import get_default_data_dir

logger = logging.getLogger("notifyrelay.local_store")

# Fixed storage keys
FALLBACK_CONFIG_KEY = "notification_fallback_config"
PREFERENCES_KEY = "pwa_notification_preferences"

STORE_DIRNAME = "state"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")

ModelT = TypeVar("ModelT", bound=BaseModel)


class KeyValueStore(Protocol):
    """String key-value storage that survives process restarts."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-memory KeyValueStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    File-backed KeyValueStore.

    Each key is stored at ``{base_dir}/state/{key}.json``.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            base_dir: Data directory (defaults to the platform data dir)
        """
        self.base_dir = Path(base_dir) if base_dir else get_default_data_dir()
        self.state_dir = self.base_dir / STORE_DIRNAME

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.state_dir / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.debug(f"Failed to read {path}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ============================================================================
# Model Helpers
# ============================================================================


def load_json(store: KeyValueStore, key: str) -> Optional[Any]:
    """
    Read and decode a JSON value.

    Returns:
        Decoded value, or None if missing or not valid JSON
    """
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug(f"Discarding corrupt stored value for {key}: {e}")
        return None


def load_model(store: KeyValueStore, key: str, model: Type[ModelT]) -> Optional[ModelT]:
    """
    Load a pydantic model stored under ``key``.

    Returns:
        The model, or None if missing, corrupt, or invalid
    """
    data = load_json(store, key)
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Discarding invalid stored {model.__name__} for {key}: {e}")
        return None


def save_model(store: KeyValueStore, key: str, value: BaseModel, by_alias: bool = False) -> None:
    """Serialize a pydantic model as JSON under ``key``."""
    store.set(key, value.model_dump_json(by_alias=by_alias))
