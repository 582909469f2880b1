"""
guildmirror.services.store_notify — Cross-Process Store Notifications
======================================================================

The HTTP API and the bot run as separate processes sharing one database.
When the API writes a state or a node's custom config, the bot must react
as if the write had happened in-process (route the command, toggle text
command forwarding).  PostgreSQL LISTEN/NOTIFY carries the path of the
changed row together with the written value; the bot re-emits exactly that
value to the store's in-process subscribers, so two quick writes to one
command key are both seen even if the second lands before the first relay.

PostgreSQL caps a NOTIFY payload at 8000 bytes.  A state write whose
payload would exceed that travels as path + ack only, and the bot re-reads
the row instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildmirror.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

STATES_CHANNEL = "guildmirror_states"
OBJECTS_CHANNEL = "guildmirror_objects"

ALLOWED_NOTIFY_CHANNELS: frozenset[str] = frozenset({STATES_CHANNEL, OBJECTS_CHANNEL})

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more.
NOTIFY_PAYLOAD_LIMIT = 8000


def state_payload(path: str, val: Any, ack: bool) -> dict[str, Any]:
    """Build the NOTIFY payload for a state write, dropping ``val`` if too large."""
    payload = {"id": path, "val": val, "ack": ack}
    if len(json.dumps(payload).encode("utf-8")) >= NOTIFY_PAYLOAD_LIMIT:
        return {"id": path, "ack": ack}
    return payload


def notify_supported(session: Session) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


def notify_before_commit(session: Session, channel: str, payload: dict[str, Any]) -> None:
    """Queue a NOTIFY inside the current transaction (delivered on commit).

    A no-op on engines other than PostgreSQL, so SQLite-backed tests and
    single-process setups run the same code path.
    """
    if channel not in ALLOWED_NOTIFY_CHANNELS:
        raise ValueError(
            f"Invalid NOTIFY channel: '{channel}'. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_CHANNELS)}"
        )
    if not notify_supported(session):
        return
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": channel, "payload": json.dumps(payload)},
    )


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------
class StoreNotifyListener:
    """Background thread LISTENing on both store channels.

    Notifications are handed to the asyncio loop with
    :func:`asyncio.run_coroutine_threadsafe`; the thread itself never
    touches the store.
    """

    MAX_BACKOFF = 60.0
    BASE_BACKOFF = 1.0
    MAX_RECONNECT_ATTEMPTS = 10

    def __init__(self, engine: Engine, store: ObjectStore) -> None:
        self._engine = engine
        self._store = store
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        return self._failed

    # -------------------------------------------------------------------
    # Dispatch (runs on the listener thread)
    # -------------------------------------------------------------------
    def handle_notify(self, channel: str, raw_payload: str) -> None:
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid NOTIFY payload on '%s': %s", channel, raw_payload)
            return

        path = data.get("id") if isinstance(data, dict) else None
        if not path:
            logger.warning("NOTIFY payload on '%s' missing 'id': %s", channel, raw_payload)
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Cannot relay NOTIFY for %s, no event loop", path)
            return

        if channel == STATES_CHANNEL:
            if "val" in data:
                coro = self._store.relay_state_change(
                    path, (data["val"], bool(data.get("ack", False))),
                )
            else:
                coro = self._store.relay_state_change(path)
        elif channel == OBJECTS_CHANNEL:
            coro = self._store.relay_object_change(path)
        else:
            logger.warning("Unknown NOTIFY channel: %s, ignoring", channel)
            return
        asyncio.run_coroutine_threadsafe(coro, loop)

    # -------------------------------------------------------------------
    # Thread lifecycle
    # -------------------------------------------------------------------
    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start LISTENing; a no-op on engines other than PostgreSQL."""
        if self._engine.dialect.name != "postgresql":
            logger.info("Store NOTIFY listener disabled (dialect %s)", self._engine.dialect.name)
            return

        self._loop = loop
        self._thread = threading.Thread(
            target=self._listen, daemon=True, name="store-notify-listener",
        )
        self._thread.start()
        logger.info("Store NOTIFY listener thread started")

    def stop(self) -> None:
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("Store NOTIFY listener thread stopped")

    def _listen(self) -> None:
        import psycopg2

        # str(engine.url) masks the password; psycopg2 needs the real one
        raw_url = self._engine.url.render_as_string(hide_password=False)
        dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
        attempt = 0

        while not self._shutdown_event.is_set():
            conn = None
            try:
                conn = psycopg2.connect(dsn)
                conn.set_isolation_level(0)  # autocommit
                cur = conn.cursor()
                cur.execute(f"LISTEN {STATES_CHANNEL};")
                cur.execute(f"LISTEN {OBJECTS_CHANNEL};")
                logger.info(
                    "PG LISTEN started on channels '%s', '%s'",
                    STATES_CHANNEL, OBJECTS_CHANNEL,
                )
                attempt = 0
                self._healthy = True

                while not self._shutdown_event.is_set():
                    if _select.select([conn], [], [], 5.0) == ([], [], []):
                        continue
                    conn.poll()
                    while conn.notifies:
                        notify = conn.notifies.pop(0)
                        logger.debug("NOTIFY on '%s': %s", notify.channel, notify.payload)
                        try:
                            self.handle_notify(notify.channel, notify.payload or "")
                        except Exception:
                            logger.exception(
                                "Error handling NOTIFY on '%s': %s",
                                notify.channel, notify.payload,
                            )

            except Exception:
                self._healthy = False
                attempt += 1

                if attempt >= self.MAX_RECONNECT_ATTEMPTS:
                    logger.critical(
                        "PG LISTEN exhausted %d retries. "
                        "API writes will not reach the bot until restart.",
                        self.MAX_RECONNECT_ATTEMPTS,
                    )
                    self._failed = True
                    break

                backoff = min(self.BASE_BACKOFF * (2 ** (attempt - 1)), self.MAX_BACKOFF)
                wait = backoff + random.uniform(0, backoff * 0.5)
                logger.exception(
                    "PG LISTEN connection lost (attempt %d/%d). Reconnecting in %.1fs…",
                    attempt, self.MAX_RECONNECT_ATTEMPTS, wait,
                )
                if self._shutdown_event.wait(timeout=wait):
                    break
            finally:
                if conn is not None:
                    try:
                        conn.close()
                    except Exception:
                        logger.debug("Error closing LISTEN connection", exc_info=True)
