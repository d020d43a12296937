"""
Video Analytics Identity
Session, anonymous and user identifiers with their storage lifetimes.
"""

import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import orjson

from utils import generate_uuid, sdk_logger

SESSION_KEY = "video_analytics_session_id"
ANONYMOUS_KEY = "video_analytics_user_id"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """Storage that lives as long as the object (one SDK session)."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonFileStorage:
    """Durable storage backed by a small JSON document on disk."""

    def __init__(self, path: str, debug: bool = False):
        self.path = Path(path).expanduser()
        self.logger = sdk_logger(debug, component="identity")

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            self.logger.warning("identity_storage_unreadable", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "wb") as handle:
                handle.write(orjson.dumps(data))
            os.replace(tmp_path, self.path)
        except OSError as e:
            self.logger.warning("identity_storage_write_failed", path=str(self.path), error=str(e))


class IdentityStore:
    """
    Resolves the identifiers attached to every event.

    session_id lives in session-scoped storage, anonymous_id in durable
    storage, user_id comes from the host application and may be None.
    """

    def __init__(
        self,
        session_storage: Optional[KeyValueStorage] = None,
        durable_storage: Optional[KeyValueStorage] = None,
        user_id_provider: Optional[Callable[[], Optional[str]]] = None
    ):
        self.session_storage = session_storage if session_storage is not None else MemoryStorage()
        self.durable_storage = durable_storage if durable_storage is not None else MemoryStorage()
        self.user_id_provider = user_id_provider
        self._resolved: Dict[str, str] = {}

    def _get_or_create(self, storage: KeyValueStorage, key: str) -> str:
        if key in self._resolved:
            return self._resolved[key]

        value = storage.get(key)
        if not value:
            value = generate_uuid()
            storage.set(key, value)
        self._resolved[key] = value
        return value

    @property
    def session_id(self) -> str:
        return self._get_or_create(self.session_storage, SESSION_KEY)

    @property
    def anonymous_id(self) -> str:
        return self._get_or_create(self.durable_storage, ANONYMOUS_KEY)

    @property
    def user_id(self) -> Optional[str]:
        if self.user_id_provider is None:
            return None
        return self.user_id_provider()
