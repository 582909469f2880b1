"""
tests/test_config.py — YAML Configuration Loader
================================================
"""

from __future__ import annotations

import pytest

from guildmirror.config import AuthorizedServerRole, AuthorizedUser, load_config, parse_config


class TestParseConfig:

    def test_defaults(self):
        cfg = parse_config({})
        assert cfg.namespace == "discord.0"
        assert cfg.enable_authorization is True
        assert cfg.process_all_messages_in_server_channel is False
        assert cfg.dynamic_server_updates is True
        assert cfg.resync_interval_minutes == 0
        assert cfg.authorized_users == ()

    def test_grants_are_parsed(self):
        cfg = parse_config({
            "authorized_users": [{"user_id": 1, "read": True}],
            "authorized_server_roles": [{"server_id": 2, "role_id": 3, "write": True}],
        })
        assert cfg.authorized_users == (AuthorizedUser("1", read=True),)
        assert cfg.authorized_server_roles == (AuthorizedServerRole("2", "3", write=True),)

    def test_rejects_unknown_response_mode(self):
        with pytest.raises(ValueError, match="text_command_respond_with"):
            parse_config({"text_command_respond_with": "shout"})

    def test_rejects_unknown_log_mode(self):
        with pytest.raises(ValueError, match="log_unauthorized"):
            parse_config({"log_unauthorized": "loud"})


class TestLoadConfig:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("namespace: discord.1\nobserve_user_presence: true\n", encoding="utf-8")
        cfg = load_config(path)
        assert cfg.namespace == "discord.1"
        assert cfg.observe_user_presence is True

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path).namespace == "discord.0"
