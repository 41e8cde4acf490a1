import asyncio
import fnmatch
import json

import pytest
from redis import exceptions as redis_exceptions

from adapters.config import parse_engine_config
from adapters.errors import AuthenticationError, EmptyPayloadError, NotFoundError, TransientUnavailableError
from adapters.redis import RedisAdapter, split_key


class FakeRedis:
    def __init__(self, data=None):
        self.data = dict(data or {})
        self.closed = False

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True

    async def scan_iter(self, match="*", count=None):
        for key in sorted(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, xx=False):
        if xx and key not in self.data:
            return None
        self.data[key] = value
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


def _adapter(fake, **options):
    config = parse_engine_config("redis", {"host": "cache", **options})
    return RedisAdapter(config, client_factory=lambda cfg, **kwargs: fake)


def test_split_key_defaults_bare_keys():
    assert split_key("users:42") == ("users", "42")
    assert split_key("session:a:b") == ("session", "a:b")
    assert split_key("counter") == ("default", "counter")


def test_redis_document_round():
    fake = FakeRedis({"users:1": json.dumps({"name": "Ada"}), "users:2": "plain", "hits": "7"})
    adapter = _adapter(fake)

    async def scenario():
        await adapter.connect()
        collections = await adapter.list_collections()
        users = await adapter.list_documents("users")
        bare = await adapter.read("default", "hits")
        created = await adapter.create("users", "3", {"name": "Grace"})
        merged = await adapter.update("users", "1", {"role": "admin"})
        removed = await adapter.delete("users", "3")
        await adapter.disconnect()
        return collections, users, bare, created, merged, removed

    collections, users, bare, created, merged, removed = asyncio.run(scenario())
    assert collections == ["default", "users"]
    assert users == [{"name": "Ada", "id": "1"}, {"id": "2", "value": "plain"}]
    assert bare == {"id": "hits", "value": 7}
    assert created == {"name": "Grace", "id": "3"}
    assert merged == {"name": "Ada", "role": "admin", "id": "1"}
    assert json.loads(fake.data["users:1"]) == {"name": "Ada", "role": "admin"}
    assert removed == {"success": True, "row": {"name": "Grace", "id": "3"}}
    assert fake.closed is True


def test_redis_missing_keys_and_empty_updates():
    adapter = _adapter(FakeRedis())

    async def scenario():
        await adapter.connect()
        with pytest.raises(NotFoundError):
            await adapter.read("users", "404")
        with pytest.raises(NotFoundError):
            await adapter.update("users", "404", {"a": 1})
        with pytest.raises(NotFoundError):
            await adapter.delete("users", "404")
        with pytest.raises(EmptyPayloadError):
            await adapter.update("users", "1", {"id": "1"})

    asyncio.run(scenario())


def test_scan_limit_caps_listing_and_counting():
    fake = FakeRedis({f"events:{i:03d}": "{}" for i in range(20)})
    adapter = _adapter(fake, scan_limit=5)

    async def scenario():
        await adapter.connect()
        return await adapter.count("events"), len(await adapter.list_documents("events", None))

    assert asyncio.run(scenario()) == (5, 5)


def test_redis_error_classification():
    adapter = _adapter(FakeRedis(), password="topsecret")
    auth = adapter.classify_error(redis_exceptions.ResponseError("WRONGPASS invalid username-password pair"))
    assert isinstance(auth, AuthenticationError)
    down = adapter.classify_error(redis_exceptions.ConnectionError("topsecret refused"))
    assert isinstance(down, TransientUnavailableError)
    assert "topsecret" not in down.details
