"""
tests/test_bot_core.py — Bot Wiring & Text-Command Client
==========================================================
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from guildmirror.bot.core import EXTENSIONS, MirrorBot
from guildmirror.config import MirrorConfig
from guildmirror.engine.events import GatewayEvent, GatewayEventKind
from guildmirror.services.text_command import HttpTextCommandClient


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.new_event_loop().run_until_complete(coro)


class TestMirrorBot:

    def test_intents_follow_config(self, db_engine):
        bot = MirrorBot(MirrorConfig(observe_user_presence=True), db_engine)
        assert bot.intents.presences is True
        assert bot.intents.members is True
        assert bot.intents.message_content is True
        assert bot.message_router.text_command is None

        quiet = MirrorBot(MirrorConfig(), db_engine)
        assert quiet.intents.presences is False

    def test_text_command_client_only_with_url(self, db_engine):
        bot = MirrorBot(MirrorConfig(text_command_url="http://tc.test/ask"), db_engine)
        assert bot.message_router.text_command.url == "http://tc.test/ask"

    def test_extensions_listed(self):
        assert EXTENSIONS == ["guildmirror.bot.cogs.gateway", "guildmirror.bot.cogs.tasks"]

    def test_structure_event_requests_reconciliation(self, db_engine):
        bot = MirrorBot(MirrorConfig(), db_engine)
        with patch.object(bot, "request_reconciliation") as request:
            run_async(bot._on_structure_event(
                GatewayEvent(GatewayEventKind.STRUCTURE_CHANGED, reason="channel_create"),
            ))
        request.assert_called_once_with("channel_create")

    def test_structure_event_ignored_when_disabled(self, db_engine):
        bot = MirrorBot(MirrorConfig(dynamic_server_updates=False), db_engine)
        with patch.object(bot, "request_reconciliation") as request:
            run_async(bot._on_structure_event(
                GatewayEvent(GatewayEventKind.STRUCTURE_CHANGED, reason="role_update"),
            ))
        request.assert_not_called()

    def test_ready_event_sets_connection_presence_and_resyncs(self, db_engine):
        bot = MirrorBot(MirrorConfig(bot_name="Mirror"), db_engine)
        bot.bot_presence = MagicMock(
            set_connected=AsyncMock(), apply_bot_name=AsyncMock(), apply=AsyncMock(),
        )
        with patch.object(bot, "request_reconciliation") as request:
            run_async(bot._on_ready_event(GatewayEvent(GatewayEventKind.READY, reason="ready")))

        bot.bot_presence.set_connected.assert_awaited_once_with(True, force=True)
        bot.bot_presence.apply_bot_name.assert_awaited_once_with("Mirror")
        bot.bot_presence.apply.assert_awaited_once()
        request.assert_called_once_with("ready")

    def test_message_event_is_ingested(self, db_engine):
        bot = MirrorBot(MirrorConfig(), db_engine)
        bot.message_router = MagicMock(ingest=AsyncMock())
        message = MagicMock()
        run_async(bot._on_message_event(
            GatewayEvent(GatewayEventKind.MESSAGE_CREATE, payload={"message": message}),
        ))
        bot.message_router.ingest.assert_awaited_once_with(message)


class TestHttpTextCommandClient:

    def _client_with(self, handler):
        return patch(
            "guildmirror.services.text_command.httpx.AsyncHTTPTransport",
            return_value=httpx.MockTransport(handler),
        )

    def test_posts_text_and_returns_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "pong"})

        with self._client_with(handler):
            result = run_async(HttpTextCommandClient("http://tc.test/ask").send("ping"))

        assert result == "pong"
        assert seen["body"] == {"text": "ping"}

    def test_empty_response_is_none(self):
        with self._client_with(lambda request: httpx.Response(200, json={"response": ""})):
            assert run_async(HttpTextCommandClient("http://tc.test/ask").send("ping")) is None

    def test_http_error_raises(self):
        with self._client_with(lambda request: httpx.Response(500)):
            with pytest.raises(httpx.HTTPStatusError):
                run_async(HttpTextCommandClient("http://tc.test/ask").send("ping"))
