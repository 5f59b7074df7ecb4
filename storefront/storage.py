"""
Key-value persistence port for client-held state (token, cart, wishlist).

Backends: in-memory, a JSON file on disk, or Redis.
"""
import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from storefront.config import Config
from storefront.exceptions import StorageConnectionError
from storefront.redis_client import RedisClient

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Get/set/remove string values by key"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def set_many(self, values: Dict[str, str]) -> None:
        """Write all values or none of them"""
        ...


class MemoryStorage(KeyValueStorage):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def set_many(self, values: Dict[str, str]) -> None:
        self._data.update(values)


class FileStorage(KeyValueStorage):
    """All keys live in one JSON document, replaced atomically on every write"""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed storage file {self.path}")
            return {}
        return data

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".storage-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageConnectionError(f"Failed to write storage file {self.path}: {e}")

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def set_many(self, values: Dict[str, str]) -> None:
        data = self._read()
        data.update(values)
        self._write(data)


class RedisStorage(KeyValueStorage):

    def __init__(self, client: RedisClient, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return self.client.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def remove(self, key: str) -> None:
        self.client.delete(self._key(key))

    def set_many(self, values: Dict[str, str]) -> None:
        self.client.set_many({self._key(k): v for k, v in values.items()})


def create_storage(backend: Optional[str] = None) -> KeyValueStorage:
    """Build the storage backend named in configuration"""
    backend = (backend or Config.STORAGE_BACKEND).lower()
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(Config.STORAGE_PATH)
    if backend == "redis":
        return RedisStorage(RedisClient(), prefix=Config.REDIS_KEY_PREFIX)
    raise ValueError(f"Unknown storage backend: {backend}")
