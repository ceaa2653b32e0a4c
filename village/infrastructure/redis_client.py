from typing import Any, Dict, Optional

import redis  # type: ignore[import-untyped]
import structlog  # type: ignore[import-untyped]

from village.core.config import settings

logger = structlog.get_logger()


class RedisKeyValueStore:
    """
    Durable key/value store for the pending action ledger.

    Keys are namespaced per client so two browsers/devices never share
    ledger slots. When Redis is unreachable every call degrades to a miss
    (None / False) and logs, the controller keeps working without replay.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        namespace: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.url = url or settings.redis_url
        self.namespace = namespace or settings.ledger_namespace
        self.redis: Optional[Any] = client

    def connect(self) -> bool:
        if self.redis is not None:
            return True
        try:
            pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=10,
                encoding="utf-8",
                decode_responses=True,
                socket_keepalive=True,
            )
            client = redis.Redis(connection_pool=pool)
            client.ping()
            self.redis = client
            logger.info("redis_connected", url=self.url, namespace=self.namespace)
            return True
        except Exception as e:
            logger.error("redis_connection_failed", url=self.url, error=str(e))
            self.redis = None
            return False

    def disconnect(self) -> None:
        if self.redis:
            self.redis.close()
            self.redis = None
        logger.info("redis_disconnected", namespace=self.namespace)

    def _key(self, key: str) -> str:
        return f"village:ledger:{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        if not self.redis:
            return None

        try:
            value = self.redis.get(self._key(key))
            if isinstance(value, bytes):
                return value.decode("utf-8")
            return value
        except Exception as e:
            logger.error("redis_get_error", key=key, error=str(e))
            return None

    def set(self, key: str, value: str) -> bool:
        if not self.redis:
            return False

        try:
            self.redis.set(self._key(key), value)
            return True
        except Exception as e:
            logger.error("redis_set_error", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        if not self.redis:
            return False

        try:
            self.redis.delete(self._key(key))
            return True
        except Exception as e:
            logger.error("redis_delete_error", key=key, error=str(e))
            return False


class MemoryKeyValueStore:
    """Process-local store. Used for tests and when no Redis is configured."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def delete(self, key: str) -> bool:
        self.data.pop(key, None)
        return True


def create_key_value_store(backend: Optional[str] = None):
    """Build the store selected by LEDGER_BACKEND."""
    backend = backend or settings.ledger_backend
    if backend == "memory":
        return MemoryKeyValueStore()

    store = RedisKeyValueStore()
    if not store.connect():
        logger.warning("ledger_running_without_redis", url=store.url)
    return store
