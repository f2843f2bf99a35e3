"""
Durable key-value storage for client state.

Every client session sees its own namespace, the way each browser sees its
own local storage. Values are JSON strings.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from storefront.config import Config

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Minimal string key-value store"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """Keys starting with prefix"""
        ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def namespaced(self, namespace: str) -> "NamespacedStorage":
        return NamespacedStorage(self, namespace)


class MemoryStorage(KeyValueStorage):
    """In-process storage, for tests and single-process local runs"""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self.data if key.startswith(prefix)]


class RedisStorage(KeyValueStorage):
    """Redis-backed storage with an optional TTL on every write"""

    def __init__(self, redis_client, ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl or None

    def get(self, key: str) -> Optional[str]:
        return self.redis.get(key)

    def set(self, key: str, value: str) -> None:
        self.redis.set(key, value, ex=self.ttl)

    def delete(self, key: str) -> None:
        self.redis.delete(key)

    def keys(self, prefix: str = "") -> List[str]:
        # Escape glob metacharacters so the prefix matches literally
        escaped = "".join(f"\\{c}" if c in "*?[]\\" else c for c in prefix)
        return self.redis.scan_keys(f"{escaped}*")

    def ping(self) -> bool:
        return self.redis.ping()

    def close(self) -> None:
        self.redis.close()


class NamespacedStorage(KeyValueStorage):
    """View of another storage with every key under a fixed prefix"""

    def __init__(self, backend: KeyValueStorage, namespace: str):
        if not namespace:
            raise ValueError("namespace must be non-empty")
        self.backend = backend
        self.prefix = f"{namespace}:"

    def get(self, key: str) -> Optional[str]:
        return self.backend.get(self.prefix + key)

    def set(self, key: str, value: str) -> None:
        self.backend.set(self.prefix + key, value)

    def delete(self, key: str) -> None:
        self.backend.delete(self.prefix + key)

    def keys(self, prefix: str = "") -> List[str]:
        offset = len(self.prefix)
        return [key[offset:] for key in self.backend.keys(self.prefix + prefix)]

    def ping(self) -> bool:
        return self.backend.ping()


def build_storage() -> KeyValueStorage:
    """Storage backend selected by Config.STORAGE_BACKEND"""
    backend = Config.STORAGE_BACKEND.lower()
    if backend == "memory":
        logger.info("Using in-memory storage; client state will not survive restarts")
        return MemoryStorage()
    if backend == "redis":
        from storefront.redis_client import RedisClient
        return RedisStorage(RedisClient(), ttl=Config.STORAGE_TTL_SECONDS)
    raise ValueError(f"Unknown STORAGE_BACKEND: {Config.STORAGE_BACKEND}")
