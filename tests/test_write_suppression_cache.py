"""
tests/test_write_suppression_cache.py — Definition & Snapshot Caches
====================================================================

Identical upserts must not reach the store; invalidation must make the
next upsert write again.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from guildmirror.engine.cache import WriteSuppressionCache
from guildmirror.engine.nodes import container, leaf


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.new_event_loop().run_until_complete(coro)


@pytest.fixture
def cache(fake_store):
    return WriteSuppressionCache(fake_store)


class TestDefinitionCache:

    def test_second_identical_upsert_is_skipped(self, cache, fake_store):
        async def _inner():
            assert await cache.upsert_definition("ns.a", container("A")) is True
            assert await cache.upsert_definition("ns.a", container("A")) is False
        run_async(_inner())
        assert fake_store.writes == [("object", "ns.a")]
        assert cache.definition_writes == 1

    def test_changed_definition_is_written(self, cache, fake_store):
        async def _inner():
            await cache.upsert_definition("ns.a", container("A"))
            assert await cache.upsert_definition("ns.a", container("B")) is True
        run_async(_inner())
        assert fake_store.objects["ns.a"]["common"]["name"] == "B"

    def test_deep_equal_definitions_are_equal(self, cache):
        async def _inner():
            await cache.upsert_definition("ns.c", container("C", icon="x.svg", channelId="9"))
            return await cache.upsert_definition("ns.c", container("C", channelId="9", icon="x.svg"))
        assert run_async(_inner()) is False

    def test_failed_write_is_not_cached(self):
        store = AsyncMock()
        store.extend_object.side_effect = RuntimeError("db down")
        cache = WriteSuppressionCache(store)

        with pytest.raises(RuntimeError):
            run_async(cache.upsert_definition("ns.a", leaf("A", "text")))
        assert not cache.has_definition("ns.a")


class TestSnapshotCache:

    def test_snapshot_written_as_json_text_with_ack(self, cache, fake_store):
        run_async(cache.upsert_snapshot("ns.u.json", {"id": "1", "tag": "x"}))
        state = fake_store.states["ns.u.json"]
        assert json.loads(state.val) == {"id": "1", "tag": "x"}
        assert state.ack is True

    def test_equal_snapshot_is_skipped(self, cache, fake_store):
        async def _inner():
            await cache.upsert_snapshot("ns.u.json", {"roles": ["a", "b"]})
            return await cache.upsert_snapshot("ns.u.json", {"roles": ["a", "b"]})
        assert run_async(_inner()) is False
        assert len(fake_store.writes) == 1

    def test_cached_value_is_isolated_from_caller(self, cache):
        value = {"roles": ["a"]}
        run_async(cache.upsert_snapshot("ns.u.json", value))
        value["roles"].append("b")

        assert cache.get_snapshot("ns.u.json") == {"roles": ["a"]}
        copy = cache.get_snapshot("ns.u.json")
        copy["roles"].append("c")
        assert cache.get_snapshot("ns.u.json") == {"roles": ["a"]}

    def test_caches_are_independent(self, cache, fake_store):
        async def _inner():
            await cache.upsert_definition("ns.u.json", leaf("JSON data", "json"))
            return await cache.upsert_snapshot("ns.u.json", {"id": "1"})
        assert run_async(_inner()) is True
        assert cache.has_definition("ns.u.json")
        assert cache.has_snapshot("ns.u.json")


class TestInvalidation:

    def test_invalidate_subtree_forces_rewrite(self, cache, fake_store):
        async def _inner():
            await cache.upsert_definition("ns.s.1", container("S"))
            await cache.upsert_definition("ns.s.1.json", leaf("JSON data", "json"))
            await cache.upsert_snapshot("ns.s.1.json", {"id": "1"})
            await cache.upsert_definition("ns.s.10", container("Other"))

            assert cache.invalidate_subtree("ns.s.1") == 3
            assert await cache.upsert_definition("ns.s.1", container("S")) is True
            assert await cache.upsert_definition("ns.s.10", container("Other")) is False
        run_async(_inner())

    def test_invalidate_single_path(self, cache):
        run_async(cache.upsert_definition("ns.a", container("A")))
        cache.invalidate("ns.a")
        assert len(cache) == 0

    def test_reset_counters(self, cache):
        run_async(cache.upsert_definition("ns.a", container("A")))
        cache.reset_counters()
        assert cache.definition_writes == 0
        assert cache.snapshot_writes == 0
