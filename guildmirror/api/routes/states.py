"""
guildmirror.api.routes.states — Store objects & states
======================================================

Read the mirrored tree and write command keys from outside the bot
process.  Unacknowledged state writes reach the bot through PG NOTIFY and
are routed like any other store write.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from guildmirror.api.deps import get_current_admin, get_store
from guildmirror.services.object_store import ObjectStore

router = APIRouter(tags=["store"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class StateWrite(BaseModel):
    val: Any = None
    ack: bool = False


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------
@router.get("/objects")
async def list_objects(
    prefix: str = Query(..., min_length=1),
    admin: dict = Depends(get_current_admin),
    store: ObjectStore = Depends(get_store),
):
    return {"prefix": prefix, "ids": await store.list_objects(prefix)}


@router.put("/objects/{path:path}/custom")
async def put_custom(
    path: str,
    custom: dict[str, Any] | None = None,
    admin: dict = Depends(get_current_admin),
    store: ObjectStore = Depends(get_store),
):
    """Attach per-node config (e.g. ``{"enabled": true, "enableText2command": true}``)."""
    if not await store.set_custom(path, custom):
        raise HTTPException(404, f"Object not found: {path}")
    logger.info("Custom config of %s set by %s", path, admin.get("sub"))
    return {"id": path, "custom": custom}


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------
@router.get("/states/{path:path}")
async def get_state(
    path: str,
    admin: dict = Depends(get_current_admin),
    store: ObjectStore = Depends(get_store),
):
    state = await store.get_state(path)
    if state is None:
        raise HTTPException(404, f"State not found: {path}")
    return {"id": path, "val": state.val, "ack": state.ack, "ts": state.ts, "lc": state.lc}


@router.put("/states/{path:path}")
async def put_state(
    path: str,
    body: StateWrite,
    admin: dict = Depends(get_current_admin),
    store: ObjectStore = Depends(get_store),
):
    obj = await store.get_object(path)
    if obj is None:
        raise HTTPException(404, f"Object not found: {path}")
    if obj["type"] != "state":
        raise HTTPException(400, f"{path} is not a leaf node")
    if not body.ack and not obj["common"].get("write"):
        raise HTTPException(403, f"{path} is read-only")

    await store.set_state(path, body.val, ack=body.ack)
    logger.info("State %s written by %s (ack=%s)", path, admin.get("sub"), body.ack)
    return {"id": path, "val": body.val, "ack": body.ack}
