"""
tests/test_event_dispatcher.py — Gateway Event Dispatch Loop
=============================================================
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

from guildmirror.bot.cogs.gateway import Gateway
from guildmirror.engine.events import EventDispatcher, GatewayEvent, GatewayEventKind


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.new_event_loop().run_until_complete(coro)


class TestEventDispatcher:

    def test_events_handled_in_arrival_order(self):
        seen: list[str] = []

        async def handler(event):
            await asyncio.sleep(0)
            seen.append(event.reason)

        async def _inner():
            dispatcher = EventDispatcher()
            dispatcher.register(GatewayEventKind.MESSAGE_CREATE, handler)
            dispatcher.start()
            for i in range(5):
                dispatcher.publish(GatewayEvent(GatewayEventKind.MESSAGE_CREATE, reason=str(i)))
            await dispatcher.stop()

        run_async(_inner())
        assert seen == ["0", "1", "2", "3", "4"]

    def test_unregistered_kind_is_dropped(self):
        async def _inner():
            dispatcher = EventDispatcher()
            dispatcher.publish(GatewayEvent(GatewayEventKind.PRESENCE_UPDATE))
            return dispatcher.pending

        assert run_async(_inner()) == 0

    def test_failing_handler_does_not_stop_loop(self):
        seen: list[str] = []

        async def handler(event):
            if event.reason == "bad":
                raise RuntimeError("boom")
            seen.append(event.reason)

        async def _inner():
            dispatcher = EventDispatcher()
            dispatcher.register(GatewayEventKind.READY, handler)
            dispatcher.start()
            dispatcher.publish(GatewayEvent(GatewayEventKind.READY, reason="bad"))
            dispatcher.publish(GatewayEvent(GatewayEventKind.READY, reason="good"))
            await dispatcher.stop()

        run_async(_inner())
        assert seen == ["good"]


class TestGatewayCog:

    def _bot(self, **cfg):
        options = {
            "dynamic_server_updates": True,
            "observe_user_presence": False,
            "observe_user_voice_state": True,
        }
        options.update(cfg)
        bot = MagicMock()
        bot.cfg = SimpleNamespace(**options)
        return bot

    def test_structure_events_publish_when_enabled(self):
        bot = self._bot()
        run_async(Gateway(bot).on_guild_channel_create(MagicMock()))

        event = bot.dispatcher.publish.call_args.args[0]
        assert event.kind is GatewayEventKind.STRUCTURE_CHANGED
        assert event.reason == "channel_create"

    def test_structure_events_ignored_when_disabled(self):
        bot = self._bot(dynamic_server_updates=False)
        run_async(Gateway(bot).on_member_join(MagicMock()))
        bot.dispatcher.publish.assert_not_called()

    def test_presence_gated_by_config(self):
        bot = self._bot()
        run_async(Gateway(bot).on_presence_update(MagicMock(), MagicMock()))
        bot.dispatcher.publish.assert_not_called()

    def test_voice_state_payload(self):
        bot = self._bot()
        member, before, after = MagicMock(), MagicMock(), MagicMock()
        run_async(Gateway(bot).on_voice_state_update(member, before, after))

        event = bot.dispatcher.publish.call_args.args[0]
        assert event.kind is GatewayEventKind.VOICE_STATE_UPDATE
        assert event.payload == {"member": member, "before": before, "after": after}
