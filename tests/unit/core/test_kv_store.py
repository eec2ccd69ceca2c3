"""
Unit Tests for the key-value storage adapter
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from crportal.core import kv_store
from crportal.core.config import Settings
from crportal.core.exceptions import StorageError
from crportal.core.kv_store import (
    LocalKeyValueStore,
    RedisKeyValueStore,
    close_store,
    get_store,
    init_store,
)


async def _scan_results(keys):
    for key in keys:
        yield key


def _redis_store(keys=None) -> RedisKeyValueStore:
    client = AsyncMock()
    client.scan_iter = MagicMock(side_effect=lambda **kwargs: _scan_results(keys or []))
    return RedisKeyValueStore("redis://test:6379/0", namespace="client", client=client)


@pytest.fixture
async def reset_store():
    await close_store()
    yield
    await close_store()


class TestLocalKeyValueStore:
    """Tests for the local backend"""

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, store):
        assert await store.get("user:nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        assert await store.set("cr:CR-1", '{"crCode": "CR-1"}') is True
        assert await store.get("cr:CR-1") == '{"crCode": "CR-1"}'

    @pytest.mark.asyncio
    async def test_delete_reports_removal(self, store):
        await store.set("cr:CR-1", "{}")

        assert await store.delete("cr:CR-1") is True
        assert await store.delete("cr:CR-1") is False
        assert await store.get("cr:CR-1") is None

    @pytest.mark.asyncio
    async def test_list_keys_by_prefix(self, store):
        await store.set("cr:CR-1", "{}")
        await store.set("cr:CR-1:document", "{}")
        await store.set("user:a@example.com", "{}")

        assert await store.list_keys("cr:") == {"cr:CR-1", "cr:CR-1:document"}
        assert len(await store.list_keys()) == 3

    @pytest.mark.asyncio
    async def test_scope_flag_is_ignored(self, store):
        await store.set("current:session", "{}", shared=False)
        assert await store.get("current:session") == "{}"

    @pytest.mark.asyncio
    async def test_persists_to_file(self, tmp_path):
        path = tmp_path / "store" / "portal.json"
        first = LocalKeyValueStore(str(path))
        await first.set("cr:list", '["CR-1"]')

        assert json.loads(path.read_text()) == {"cr:list": '["CR-1"]'}

        second = LocalKeyValueStore(str(path))
        assert await second.get("cr:list") == '["CR-1"]'

    @pytest.mark.asyncio
    async def test_unreadable_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "portal.json"
        path.write_text("not json")

        with pytest.raises(StorageError):
            await LocalKeyValueStore(str(path)).get("cr:list")


class TestRedisKeyValueStore:
    """Tests for the Redis backend with a mocked client"""

    @pytest.mark.asyncio
    async def test_shared_keys_are_not_prefixed(self):
        store = _redis_store()
        store.redis.get.return_value = "value"

        assert await store.get("cr:list") == "value"
        store.redis.get.assert_awaited_once_with("cr:list")

    @pytest.mark.asyncio
    async def test_client_keys_are_namespaced(self):
        store = _redis_store()
        await store.set("current:session", "{}", shared=False)
        store.redis.set.assert_awaited_once_with("client:current:session", "{}")

    @pytest.mark.asyncio
    async def test_get_failure_raises_storage_error(self):
        store = _redis_store()
        store.redis.get.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StorageError) as exc_info:
            await store.get("cr:list")
        assert exc_info.value.details["key"] == "cr:list"

    @pytest.mark.asyncio
    async def test_get_or_none_reports_fault_as_absent(self):
        store = _redis_store()
        store.redis.get.side_effect = RedisConnectionError("connection refused")

        assert await store.get_or_none("cr:list") is None

    @pytest.mark.asyncio
    async def test_set_failure_raises_storage_error(self):
        store = _redis_store()
        store.redis.set.side_effect = RedisConnectionError("connection reset")

        with pytest.raises(StorageError):
            await store.set("cr:list", "[]")

    @pytest.mark.asyncio
    async def test_delete_returns_whether_key_existed(self):
        store = _redis_store()
        store.redis.delete.return_value = 1
        assert await store.delete("cr:CR-1") is True

        store.redis.delete.return_value = 0
        assert await store.delete("cr:CR-1") is False

    @pytest.mark.asyncio
    async def test_list_keys_escapes_glob_characters(self):
        store = _redis_store(keys=["cr:a*b1"])

        assert await store.list_keys("cr:a*b") == {"cr:a*b1"}
        store.redis.scan_iter.assert_called_once_with(match="cr:a\\*b*", count=500)

    @pytest.mark.asyncio
    async def test_list_keys_hides_client_keys_from_shared_listing(self):
        store = _redis_store(keys=["cr:list", "client:current:session"])
        assert await store.list_keys("") == {"cr:list"}

    @pytest.mark.asyncio
    async def test_list_client_keys_strips_namespace(self):
        store = _redis_store(keys=["client:current:session"])
        assert await store.list_keys("current:", shared=False) == {"current:session"}

    @pytest.mark.asyncio
    async def test_operations_without_client_raise(self):
        store = RedisKeyValueStore("redis://test:6379/0")
        with pytest.raises(StorageError):
            await store.get("cr:list")

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self):
        store = _redis_store()
        store.redis.ping.side_effect = RedisConnectionError("timeout")
        assert await store.ping() is False


class TestStoreSelection:
    """Tests for init_store / get_store / close_store"""

    @pytest.mark.asyncio
    async def test_get_store_before_init_raises(self, reset_store):
        with pytest.raises(RuntimeError):
            get_store()

    @pytest.mark.asyncio
    async def test_local_mode(self, reset_store):
        store = await init_store(Settings(STORAGE_MODE="local", REDIS_URL="redis://test:6379/0"))

        assert isinstance(store, LocalKeyValueStore)
        assert get_store() is store

    @pytest.mark.asyncio
    async def test_auto_without_redis_url_uses_local(self, reset_store):
        store = await init_store(Settings(STORAGE_MODE="auto", REDIS_URL=""))
        assert store.backend_name == "local"

    @pytest.mark.asyncio
    async def test_auto_falls_back_when_redis_unreachable(self, reset_store):
        with patch.object(RedisKeyValueStore, "connect", AsyncMock(return_value=False)):
            store = await init_store(Settings(STORAGE_MODE="auto", REDIS_URL="redis://test:6379/0"))
        assert isinstance(store, LocalKeyValueStore)

    @pytest.mark.asyncio
    async def test_auto_prefers_reachable_redis(self, reset_store):
        with patch.object(RedisKeyValueStore, "connect", AsyncMock(return_value=True)):
            store = await init_store(Settings(STORAGE_MODE="auto", REDIS_URL="redis://test:6379/0"))
        assert isinstance(store, RedisKeyValueStore)

    @pytest.mark.asyncio
    async def test_redis_mode_requires_reachable_redis(self, reset_store):
        with patch.object(RedisKeyValueStore, "connect", AsyncMock(return_value=False)):
            with pytest.raises(StorageError):
                await init_store(Settings(STORAGE_MODE="redis", REDIS_URL="redis://test:6379/0"))
        assert kv_store._store is None

    @pytest.mark.asyncio
    async def test_choice_is_fixed_until_closed(self, reset_store):
        first = await init_store(Settings(STORAGE_MODE="local"))
        again = await init_store(Settings(STORAGE_MODE="auto", REDIS_URL="redis://test:6379/0"))
        assert again is first

    @pytest.mark.asyncio
    async def test_unknown_mode_rejected(self, reset_store):
        with pytest.raises(ValueError):
            await init_store(Settings(STORAGE_MODE="sqlite"))
