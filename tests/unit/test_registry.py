import asyncio

import pytest

from adapters.config import Connection
from adapters.errors import TransientUnavailableError
from connections.registry import ConnectionRegistry
from utils.settings import Settings


CONNECTION = Connection(id="conn-1", engine="sqlite", options={"path": "unused.db"})


def test_concurrent_connects_share_one_adapter(memory_adapter):
    created = []

    class SlowAdapter(memory_adapter):
        async def _connect(self):
            await asyncio.sleep(0.01)
            await super()._connect()

    def factory(config):
        adapter = SlowAdapter({"users": {}})
        created.append(adapter)
        return adapter

    registry = ConnectionRegistry(adapter_factory=factory, settings=Settings())

    async def scenario():
        return await asyncio.gather(*(registry.connect_to_database(CONNECTION) for _ in range(5)))

    adapters = asyncio.run(scenario())
    assert len(created) == 1
    assert all(a is created[0] for a in adapters)
    assert created[0].connect_calls == 1
    assert "conn-1" in registry
    assert registry.get_generator("conn-1").adapter is created[0]


def test_failed_connect_leaves_nothing_and_retry_succeeds(memory_adapter):
    attempts = []

    class FlakyAdapter(memory_adapter):
        async def _connect(self):
            attempts.append(self)
            if len(attempts) == 1:
                raise TransientUnavailableError("warming up")

    registry = ConnectionRegistry(adapter_factory=lambda config: FlakyAdapter(), settings=Settings())

    async def scenario():
        with pytest.raises(TransientUnavailableError):
            await registry.connect_to_database(CONNECTION)
        assert "conn-1" not in registry
        assert registry.get_generator("conn-1") is None
        return await registry.connect_to_database(CONNECTION)

    adapter = asyncio.run(scenario())
    assert adapter is attempts[-1]
    assert registry.connection_ids() == ["conn-1"]


def test_joiners_see_the_same_failure(memory_adapter):
    class FailingAdapter(memory_adapter):
        async def _connect(self):
            await asyncio.sleep(0.01)
            raise TransientUnavailableError("down")

    registry = ConnectionRegistry(adapter_factory=lambda config: FailingAdapter(), settings=Settings())

    async def scenario():
        return await asyncio.gather(
            registry.connect_to_database(CONNECTION),
            registry.connect_to_database(CONNECTION),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    assert all(isinstance(r, TransientUnavailableError) for r in results)
    assert registry.connection_ids() == []


def test_disconnect_and_close_all(memory_adapter):
    adapters = {}

    def factory(config):
        adapter = memory_adapter()
        adapters[len(adapters)] = adapter
        return adapter

    registry = ConnectionRegistry(adapter_factory=factory, settings=Settings())
    other = Connection(id="conn-2", engine="sqlite", options={"path": "other.db"})

    async def scenario():
        await registry.connect_to_database(CONNECTION)
        await registry.connect_to_database(other)
        removed = await registry.disconnect("conn-1")
        missing = await registry.disconnect("conn-1")
        await registry.close_all()
        return removed, missing

    removed, missing = asyncio.run(scenario())
    assert removed is True
    assert missing is False
    assert registry.connection_ids() == []
    assert all(a.disconnect_calls == 1 for a in adapters.values())


def test_default_factory_applies_settings(tmp_path):
    db_path = tmp_path / "app.db"
    db_path.touch()
    registry = ConnectionRegistry(settings=Settings(adapter_timeout_s=3.0, sql_pool_size=2))
    connection = Connection(id="local", engine="sqlite", options={"path": str(db_path)})

    async def scenario():
        adapter = await registry.connect_to_database(connection)
        try:
            return adapter.engine, adapter.timeout_s, adapter.config.pool_size
        finally:
            await registry.close_all()

    assert asyncio.run(scenario()) == ("sqlite", 3.0, 2)
