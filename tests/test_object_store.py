"""
tests/test_object_store.py — SQLAlchemy-Backed Object/State Store
==================================================================

Runs against the in-memory SQLite engine from conftest.  Calls are awaited
one after another; the StaticPool shares a single connection.
"""

from __future__ import annotations

import asyncio

import pytest

from guildmirror.engine.nodes import container, leaf
from guildmirror.services.object_store import ObjectStore


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.new_event_loop().run_until_complete(coro)


@pytest.fixture
def store(db_engine):
    return ObjectStore(db_engine)


class TestObjects:

    def test_extend_creates_then_merges(self, store):
        async def _inner():
            await store.extend_object("ns.a", container("A", channelId="1"))
            await store.extend_object("ns.a", container("B", icon="x.svg"))
            return await store.get_object("ns.a")

        obj = run_async(_inner())
        assert obj["type"] == "channel"
        assert obj["common"] == {"name": "B", "icon": "x.svg"}
        assert obj["native"] == {"channelId": "1"}
        assert obj["custom"] is None

    def test_leaf_common_block(self, store):
        async def _inner():
            await store.extend_object("ns.a.send", leaf("Send message", "text", write=True))
            return await store.get_object("ns.a.send")

        common = run_async(_inner())["common"]
        assert common == {
            "name": "Send message", "role": "text", "type": "string",
            "read": True, "write": True, "def": "",
        }

    def test_list_is_subtree_only(self, store):
        async def _inner():
            for path in ("ns.s.1", "ns.s.1.json", "ns.s.10", "ns.s_1"):
                await store.extend_object(path, container(path))
            return await store.list_objects("ns.s.1")

        assert run_async(_inner()) == ["ns.s.1", "ns.s.1.json"]

    def test_recursive_delete_removes_states(self, store):
        async def _inner():
            await store.extend_object("ns.s.1", container("S"))
            await store.extend_object("ns.s.1.tag", leaf("Tag", "text"))
            await store.set_state("ns.s.1.tag", "x", ack=True)
            await store.extend_object("ns.s.10", container("Other"))
            await store.set_state("ns.s.10.tag", "y", ack=True)

            removed = await store.delete_object("ns.s.1", recursive=True)
            return (
                removed,
                await store.list_objects("ns.s"),
                await store.get_state("ns.s.1.tag"),
                await store.get_state("ns.s.10.tag"),
            )

        removed, remaining, gone, kept = run_async(_inner())
        assert removed == 2
        assert remaining == ["ns.s.10"]
        assert gone is None
        assert kept.val == "y"

    def test_custom_roundtrip_and_listener(self, store):
        seen = []

        async def listener(change):
            seen.append((change.path, change.custom))

        store.on_object_change(listener)

        async def _inner():
            assert await store.set_custom("ns.missing", {"enabled": True}) is False
            await store.extend_object("ns.a.message", leaf("Last message", "text"))
            assert await store.set_custom("ns.a.message", {"enabled": True}) is True
            return await store.list_custom()

        assert run_async(_inner()) == {"ns.a.message": {"enabled": True}}
        assert seen == [("ns.a.message", {"enabled": True})]


class TestStates:

    def test_set_state_tracks_last_change(self, store):
        async def _inner():
            await store.set_state("ns.a", "x")
            first = await store.get_state("ns.a")
            await asyncio.sleep(0.01)
            await store.set_state("ns.a", "x", ack=True)
            second = await store.get_state("ns.a")
            return first, second

        first, second = run_async(_inner())
        assert second.ack is True
        assert second.lc == first.lc
        assert second.ts >= first.ts

    def test_set_state_changed_skips_equal_value(self, store):
        async def _inner():
            a = await store.set_state_changed("ns.a", 1, ack=True)
            b = await store.set_state_changed("ns.a", 1, ack=True)
            c = await store.set_state_changed("ns.a", 1, ack=False)
            return a, b, c

        assert run_async(_inner()) == (True, False, True)

    def test_listener_sees_writes_and_survives_failures(self, store):
        seen = []

        async def broken(change):
            raise RuntimeError("boom")

        async def listener(change):
            seen.append((change.path, change.val, change.ack))

        store.on_state_change(broken)
        store.on_state_change(listener)
        run_async(store.set_state("ns.a", {"k": [1, 2]}))
        assert seen == [("ns.a", {"k": [1, 2]}, False)]

    def test_relay_emits_carried_value(self, store):
        seen = []

        async def listener(change):
            seen.append((change.val, change.ack))

        async def _inner():
            await store.set_state("ns.a", "second")
            store.on_state_change(listener)
            await store.relay_state_change("ns.a", ("first", False))

        run_async(_inner())
        assert seen == [("first", False)]

    def test_ack_if_unchanged(self, store):
        async def _inner():
            await store.set_state("ns.a", "cmd")
            stale = await store.ack_if_unchanged("ns.a", "old")
            fresh = await store.ack_if_unchanged("ns.a", "cmd")
            again = await store.ack_if_unchanged("ns.a", "cmd")
            return stale, fresh, again, await store.get_state("ns.a")

        stale, fresh, again, state = run_async(_inner())
        assert (stale, fresh, again) == (False, True, False)
        assert state.val == "cmd"
        assert state.ack is True

    def test_relay_reemits_current_state(self, store):
        seen = []

        async def listener(change):
            seen.append(change)

        async def _inner():
            await store.set_state("ns.a", "v")
            store.on_state_change(listener)
            await store.relay_state_change("ns.a")
            await store.relay_state_change("ns.unknown")

        run_async(_inner())
        assert [(c.path, c.val, c.ack) for c in seen] == [("ns.a", "v", False)]
