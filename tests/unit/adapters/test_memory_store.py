"""
Unit tests for InMemoryRemoteStore.
"""

from unittest.mock import AsyncMock

import pytest

from coinwise.adapters.memory_store import InMemoryRemoteStore


class TestDocuments:
    @pytest.mark.asyncio
    async def test_set_get_overwrites_whole_document(self) -> None:
        store = InMemoryRemoteStore()
        await store.set("users/u1", {"balance": 1, "name": "a"})
        await store.set("users/u1", {"balance": 2})

        assert await store.get("users/u1") == {"balance": 2}
        assert await store.get("users") == {"u1": {"balance": 2}}
        assert await store.get("users/u2") is None

    @pytest.mark.asyncio
    async def test_get_returns_a_copy(self) -> None:
        store = InMemoryRemoteStore()
        await store.set("users/u1", {"holdings": [1]})
        doc = await store.get("users/u1")
        doc["holdings"].append(2)

        assert await store.get("users/u1") == {"holdings": [1]}

    @pytest.mark.asyncio
    async def test_delete_prunes_empty_parents(self) -> None:
        store = InMemoryRemoteStore()
        await store.set("competition/players/a", {"name": "a"})
        await store.set("users/u1", {"balance": 1})
        await store.delete("competition/players/a")

        assert await store.get("competition") is None
        assert await store.get("users/u1") == {"balance": 1}

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self) -> None:
        store = InMemoryRemoteStore()
        await store.delete("nothing/here")
        assert [w.op for w in store.writes] == ["delete"]

    @pytest.mark.asyncio
    async def test_set_none_deletes(self) -> None:
        store = InMemoryRemoteStore()
        await store.set("users/u1", {"balance": 1})
        await store.set("users/u1", None)
        assert await store.get("users/u1") is None

    @pytest.mark.asyncio
    async def test_root_is_protected(self) -> None:
        store = InMemoryRemoteStore()
        with pytest.raises(ValueError):
            await store.set("/", {"a": 1})
        with pytest.raises(ValueError):
            await store.delete("")

    @pytest.mark.asyncio
    async def test_fail_next_injects_failures(self) -> None:
        store = InMemoryRemoteStore()
        store.fail_next(2)
        with pytest.raises(ConnectionError):
            await store.get("users/u1")
        with pytest.raises(ConnectionError):
            await store.set("users/u1", {"a": 1})

        await store.set("users/u1", {"a": 1})
        assert store.writes[-1].value == {"a": 1}

    @pytest.mark.asyncio
    async def test_fail_next_custom_exception(self) -> None:
        store = InMemoryRemoteStore()
        store.fail_next(1, TimeoutError("slow"))
        with pytest.raises(TimeoutError):
            await store.delete("users/u1")


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_initial_delivery_and_updates(self) -> None:
        store = InMemoryRemoteStore()
        await store.set("competition/players/a", {"pnl": 1})
        listener = AsyncMock()

        await store.subscribe("competition/players", listener)
        await store.set("competition/players/b", {"pnl": 2})
        await store.delete("competition/players/a")

        values = [c.args[0] for c in listener.await_args_list]
        assert values == [
            {"a": {"pnl": 1}},
            {"a": {"pnl": 1}, "b": {"pnl": 2}},
            {"b": {"pnl": 2}},
        ]

    @pytest.mark.asyncio
    async def test_unrelated_writes_are_not_delivered(self) -> None:
        store = InMemoryRemoteStore()
        listener = AsyncMock()
        await store.subscribe("competition/players", listener)
        await store.set("users/u1", {"a": 1})

        listener.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_close_detaches(self) -> None:
        store = InMemoryRemoteStore()
        listener = AsyncMock()
        sub = await store.subscribe("competition/players", listener)
        assert store.subscriber_count == 1

        await sub.close()
        await sub.close()
        await store.set("competition/players/a", {"pnl": 1})

        assert store.subscriber_count == 0
        assert listener.await_count == 1

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_the_write(self) -> None:
        store = InMemoryRemoteStore()
        good = AsyncMock()
        await store.subscribe("competition/players", AsyncMock(side_effect=[None, RuntimeError("x")]))
        await store.subscribe("competition/players", good)

        await store.set("competition/players/a", {"pnl": 1})

        assert good.await_count == 2
        assert await store.get("competition/players/a") == {"pnl": 1}
