"""
tests/test_authorization.py — Authorization Policy
==================================================

Per-user and per-(server, role) grants combine with logical OR; a role
grant never takes away what a user grant gives.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from guildmirror.config import AuthorizedServerRole, AuthorizedUser, MirrorConfig
from guildmirror.engine.auth import AuthorizationPolicy, Grant, Principal, principal_from_author


def _policy(users=(), roles=(), enabled=True) -> AuthorizationPolicy:
    return AuthorizationPolicy(MirrorConfig(
        enable_authorization=enabled,
        authorized_users=tuple(users),
        authorized_server_roles=tuple(roles),
    ))


class TestGrantMerging:

    def test_user_grant_only(self):
        policy = _policy(users=[AuthorizedUser("1", read=True)])
        assert policy.effective_grant(Principal("1")) == Grant(read=True)

    def test_role_adds_capabilities(self):
        policy = _policy(
            users=[AuthorizedUser("1", read=True)],
            roles=[AuthorizedServerRole("10", "100", write=True)],
        )
        principal = Principal("1", server_id="10", role_ids=("100",))
        assert policy.effective_grant(principal) == Grant(read=True, write=True)
        assert policy.is_authorized(principal, read=True, write=True)
        assert not policy.is_authorized(principal, read=True, write=True, text_command=True)

    def test_role_never_removes_user_capability(self):
        policy = _policy(
            users=[AuthorizedUser("1", read=True, write=True, text_command=True)],
            roles=[AuthorizedServerRole("10", "100")],
        )
        principal = Principal("1", server_id="10", role_ids=("100",))
        assert policy.is_authorized(principal, read=True, write=True, text_command=True)

    def test_role_on_other_server_does_not_apply(self):
        policy = _policy(roles=[AuthorizedServerRole("10", "100", write=True)])
        principal = Principal("1", server_id="11", role_ids=("100",))
        assert policy.effective_grant(principal) is None

    def test_dm_principal_ignores_roles(self):
        policy = _policy(roles=[AuthorizedServerRole("10", "100", read=True)])
        assert policy.effective_grant(Principal("1")) is None

    def test_multiple_roles_merge(self):
        policy = _policy(roles=[
            AuthorizedServerRole("10", "100", read=True),
            AuthorizedServerRole("10", "101", text_command=True),
        ])
        principal = Principal("1", server_id="10", role_ids=("100", "101", "102"))
        assert policy.effective_grant(principal) == Grant(read=True, text_command=True)

    def test_duplicate_user_entries_merge(self):
        policy = _policy(users=[
            AuthorizedUser("1", read=True),
            AuthorizedUser("1", write=True),
        ])
        assert policy.effective_grant(Principal("1")) == Grant(read=True, write=True)


class TestIsAuthorized:

    def test_disabled_allows_everyone(self):
        assert _policy(enabled=False).is_authorized(Principal("42"), write=True)

    def test_no_grant_is_unauthorized(self):
        assert not _policy().is_authorized(Principal("42"))

    def test_any_grant_suffices_without_flags(self):
        policy = _policy(users=[AuthorizedUser("1")])
        assert policy.is_authorized(Principal("1"))

    @pytest.mark.parametrize("flag", ["read", "write", "text_command"])
    def test_missing_flag_denies(self, flag):
        policy = _policy(users=[AuthorizedUser("1")])
        assert not policy.is_authorized(Principal("1"), **{flag: True})


class TestPrincipalFromAuthor:

    def test_member_carries_server_and_roles(self):
        author = SimpleNamespace(
            id=1,
            guild=SimpleNamespace(id=10),
            roles=[SimpleNamespace(id=100), SimpleNamespace(id=101)],
        )
        assert principal_from_author(author) == Principal("1", "10", ("100", "101"))

    def test_user_has_no_server(self):
        author = SimpleNamespace(id=1)
        assert principal_from_author(author) == Principal("1")
