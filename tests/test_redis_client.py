from unittest.mock import MagicMock, patch

import pytest

from village.infrastructure.redis_client import (
    MemoryKeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)


class TestRedisKeyValueStore:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, client):
        return RedisKeyValueStore(url="redis://test:6379", namespace="device-1", client=client)

    def test_keys_are_namespaced(self, store, client):
        assert store.set("pendingBooking", "/booking/1") is True

        client.set.assert_called_once_with("village:ledger:device-1:pendingBooking", "/booking/1")

    def test_get_decodes_bytes(self, store, client):
        client.get.return_value = b"/booking/1"

        assert store.get("pendingBooking") == "/booking/1"

    def test_errors_degrade_to_misses(self, store, client):
        client.get.side_effect = ConnectionError("down")
        client.set.side_effect = ConnectionError("down")
        client.delete.side_effect = ConnectionError("down")

        assert store.get("lastPath") is None
        assert store.set("lastPath", "/") is False
        assert store.delete("lastPath") is False

    def test_disconnected_store_is_inert(self):
        store = RedisKeyValueStore(url="redis://test:6379")

        assert store.get("lastPath") is None
        assert store.set("lastPath", "/") is False

    def test_connect_failure(self):
        store = RedisKeyValueStore(url="redis://unreachable:6379")
        with patch("village.infrastructure.redis_client.redis.ConnectionPool.from_url") as from_url:
            from_url.side_effect = ConnectionError("refused")

            assert store.connect() is False
        assert store.redis is None

    def test_disconnect(self, store, client):
        store.disconnect()

        client.close.assert_called_once()
        assert store.redis is None


class TestMemoryKeyValueStore:
    def test_round_trip_and_delete(self):
        store = MemoryKeyValueStore({"lastPath": "/"})

        assert store.get("lastPath") == "/"
        store.delete("lastPath")
        assert store.get("lastPath") is None


def test_factory_memory_backend():
    assert isinstance(create_key_value_store("memory"), MemoryKeyValueStore)


def test_factory_redis_backend_degrades():
    with patch.object(RedisKeyValueStore, "connect", return_value=False):
        store = create_key_value_store("redis")

    assert isinstance(store, RedisKeyValueStore)
