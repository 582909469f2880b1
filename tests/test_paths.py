"""
tests/test_paths.py — Key-Path Grammar
======================================
"""

from __future__ import annotations

import pytest

from guildmirror.engine.paths import PathGrammar, SendTarget, VoiceTarget


@pytest.fixture
def grammar():
    return PathGrammar("discord.0")


class TestBuilders:

    def test_entity_paths(self, grammar):
        assert grammar.server(1) == "discord.0.servers.1"
        assert grammar.member(1, 2) == "discord.0.servers.1.members.2"
        assert grammar.channel(1, 3) == "discord.0.servers.1.channels.3"
        assert grammar.user(4) == "discord.0.users.4"

    def test_child_channel_nests_under_category(self, grammar):
        assert grammar.channel(1, 5, 3) == "discord.0.servers.1.channels.3.channels.5"

    def test_relative_key(self, grammar):
        assert grammar.key("bot.status") == "discord.0.bot.status"

    def test_parent_of(self, grammar):
        assert grammar.parent_of("discord.0.users.4.send") == "discord.0.users.4"


class TestSendTargets:

    def test_top_level_channel(self, grammar):
        target = grammar.parse_send_target("discord.0.servers.1.channels.3.send")
        assert target == SendTarget(
            prefix="discord.0.servers.1.channels.3", action="send",
            server_id="1", channel_id="3",
        )
        assert target.is_user is False

    def test_sub_channel_targets_innermost(self, grammar):
        target = grammar.parse_send_target("discord.0.servers.1.channels.3.channels.5.sendReply")
        assert target.channel_id == "5"
        assert target.parent_id == "3"
        assert target.action == "sendReply"
        assert target.prefix == "discord.0.servers.1.channels.3.channels.5"

    def test_user_target(self, grammar):
        target = grammar.parse_send_target("discord.0.users.4.sendReaction")
        assert target.is_user
        assert target.user_id == "4"
        assert target.prefix == "discord.0.users.4"

    @pytest.mark.parametrize("path", [
        "discord.0.servers.1.channels.3.message",
        "discord.0.servers.1.members.2.send",
        "discord.1.users.4.send",
        "discord.0.users.4.send.extra",
        "discord.0.servers.x.channels.3.send",
    ])
    def test_non_command_keys(self, grammar, path):
        assert grammar.parse_send_target(path) is None


class TestVoiceTargets:

    @pytest.mark.parametrize("leaf, action", [
        ("voiceDisconnect", "Disconnect"),
        ("voiceServerMute", "ServerMute"),
        ("voiceServerDeaf", "ServerDeaf"),
    ])
    def test_voice_actions(self, grammar, leaf, action):
        path = f"discord.0.servers.1.members.2.{leaf}"
        assert grammar.parse_voice_action(path) == VoiceTarget("1", "2", action)

    def test_self_mute_is_not_an_action(self, grammar):
        assert grammar.parse_voice_action("discord.0.servers.1.members.2.voiceSelfMute") is None


class TestMatchers:

    @pytest.mark.parametrize("path", [
        "discord.0.servers.1",
        "discord.0.servers.1.channels.3",
        "discord.0.servers.1.channels.3.channels.5",
        "discord.0.servers.1.members.2",
        "discord.0.users.4",
    ])
    def test_entity_roots(self, grammar, path):
        assert grammar.is_entity_root(path)

    @pytest.mark.parametrize("path", [
        "discord.0.servers",
        "discord.0.servers.1.members",
        "discord.0.servers.1.channels",
        "discord.0.servers.1.channels.3.channels",
        "discord.0.servers.1.channels.3.json",
        "discord.0.users.4.tag",
    ])
    def test_not_entity_roots(self, grammar, path):
        assert not grammar.is_entity_root(path)

    def test_message_leaf(self, grammar):
        assert grammar.is_message_leaf("discord.0.servers.1.channels.3.message")
        assert not grammar.is_message_leaf("discord.0.servers.1.channels.3.messageId")
        assert not grammar.is_message_leaf("other.0.users.4.message")

    def test_namespace_is_escaped(self):
        grammar = PathGrammar("a.b")
        assert grammar.parse_send_target("aXb.users.4.send") is None
        assert grammar.parse_send_target("a.b.users.4.send") is not None
