"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of guildmirror.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402

from guildmirror.database.models import Base  # noqa: E402
from guildmirror.services.object_store import ObjectChange, StateChange, StateValue  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER for the epoch-ms columns.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with both store tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by the object store).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient whose store is backed by the SQLite fixture engine."""
    from fastapi.testclient import TestClient

    from guildmirror.api.main import app
    from guildmirror.api.routes.states import get_store
    from guildmirror.services.object_store import ObjectStore

    app.dependency_overrides[get_store] = lambda: ObjectStore(db_engine, notify=True)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# In-memory object store
# ---------------------------------------------------------------------------
class FakeStore:
    """Dict-backed stand-in for :class:`ObjectStore` with a write log.

    Same semantics as the SQLAlchemy store (subtree listing, recursive
    delete, changed-only writes, listeners), without threads or a database.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}
        self.states: dict[str, StateValue] = {}
        self.writes: list[tuple[str, str]] = []
        self._state_listeners: list = []
        self._object_listeners: list = []

    def on_state_change(self, listener) -> None:
        self._state_listeners.append(listener)

    def on_object_change(self, listener) -> None:
        self._object_listeners.append(listener)

    async def get_object(self, path):
        return self.objects.get(path)

    async def extend_object(self, path, definition) -> None:
        self.writes.append(("object", path))
        obj = self.objects.setdefault(
            path, {"id": path, "type": definition.kind, "common": {}, "native": {}, "custom": None},
        )
        obj["type"] = definition.kind
        obj["common"] = {**obj["common"], **definition.common()}
        obj["native"] = {**obj["native"], **definition.native_dict()}

    async def delete_object(self, path, *, recursive=False) -> int:
        self.writes.append(("delete", path))
        below = path + "."
        doomed = [p for p in self.objects if p == path or (recursive and p.startswith(below))]
        for p in doomed:
            del self.objects[p]
        for p in [p for p in self.states if p == path or (recursive and p.startswith(below))]:
            del self.states[p]
        return len(doomed)

    async def list_objects(self, prefix):
        below = prefix + "."
        return sorted(p for p in self.objects if p == prefix or p.startswith(below))

    async def set_custom(self, path, custom) -> bool:
        if path not in self.objects:
            return False
        self.objects[path]["custom"] = custom
        for listener in self._object_listeners:
            await listener(ObjectChange(path, custom))
        return True

    async def list_custom(self):
        return {p: o["custom"] for p, o in self.objects.items() if o.get("custom")}

    async def get_state(self, path):
        return self.states.get(path)

    async def set_state(self, path, val, *, ack=False) -> None:
        await self._write_state(path, val, ack)

    async def set_state_changed(self, path, val, *, ack=False) -> bool:
        current = self.states.get(path)
        if current is not None and current.val == val and current.ack == ack:
            return False
        await self._write_state(path, val, ack)
        return True

    async def ack_if_unchanged(self, path, val) -> bool:
        current = self.states.get(path)
        if current is None or current.ack or current.val != val:
            return False
        await self._write_state(path, val, True)
        return True

    async def _write_state(self, path, val, ack) -> None:
        self.writes.append(("state", path))
        prev = self.states.get(path)
        lc = prev.lc if prev is not None and prev.val == val else len(self.writes)
        self.states[path] = StateValue(val=val, ack=ack, ts=len(self.writes), lc=lc)
        for listener in self._state_listeners:
            await listener(StateChange(path, val, ack))

    def value(self, path):
        state = self.states.get(path)
        return state.val if state is not None else None


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
