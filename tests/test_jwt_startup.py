"""
tests/test_jwt_startup — Store API Secrets & Dependencies
==========================================================
The store API refuses to start without a strong JWT_SECRET, and every
store it hands to a route relays its writes to the bot over NOTIFY.
"""

from __future__ import annotations

import importlib
import os
import time
from unittest.mock import MagicMock, patch

import jwt
import pytest
from fastapi import HTTPException


def _reload_deps():
    """Re-import deps so the secret check runs against the patched env."""
    import guildmirror.api.deps as deps_mod
    importlib.reload(deps_mod)
    return deps_mod


@pytest.fixture(autouse=True)
def _restore_jwt_secret():
    """Put JWT_SECRET (and a loadable deps module) back after each test."""
    original = os.environ.get("JWT_SECRET")
    yield
    if original is not None:
        os.environ["JWT_SECRET"] = original
    else:
        os.environ.pop("JWT_SECRET", None)
    try:
        _reload_deps()
    except RuntimeError:
        pass  # test env may not have a valid secret set yet


class TestJWTSecretValidation:

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _reload_deps()

    @pytest.mark.parametrize("secret", ["guildmirror-dev-secret-change-me", "change-me"])
    def test_rejects_known_weak_default(self, secret):
        with patch.dict(os.environ, {"JWT_SECRET": secret}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _reload_deps()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                _reload_deps()

    def test_accepts_strong_secret(self):
        good_secret = "a" * 64
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert _reload_deps().JWT_SECRET == good_secret


class TestStoreDependency:

    def test_api_store_notifies_the_bot(self):
        deps = _reload_deps()
        store = deps.get_store(MagicMock())
        assert store._notify is True

    def test_engine_is_created_once(self):
        deps = _reload_deps()
        with patch.object(deps, "create_db_engine", return_value=MagicMock()) as create:
            deps.get_engine.cache_clear()
            first = deps.get_engine()
            second = deps.get_engine()
        deps.get_engine.cache_clear()
        assert first is second
        create.assert_called_once()


class TestAdminToken:

    def _bearer(self, deps, **claims) -> str:
        claims.setdefault("exp", int(time.time()) + 60)
        return "Bearer " + jwt.encode(claims, deps.JWT_SECRET, algorithm=deps.JWT_ALGORITHM)

    def test_admin_claims_returned(self):
        deps = _reload_deps()
        payload = deps.get_current_admin(self._bearer(deps, sub="1", is_admin=True))
        assert payload["sub"] == "1"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer not-a-jwt"])
    def test_missing_or_bad_token_is_401(self, header):
        deps = _reload_deps()
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(header)
        assert exc.value.status_code == 401

    def test_expired_token_is_401(self):
        deps = _reload_deps()
        header = self._bearer(deps, is_admin=True, exp=int(time.time()) - 10)
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(header)
        assert exc.value.status_code == 401

    def test_non_admin_is_403(self):
        deps = _reload_deps()
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(self._bearer(deps, sub="2", is_admin=False))
        assert exc.value.status_code == 403
