"""
guildmirror.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn guildmirror.api.main:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from guildmirror.api.deps import get_engine  # noqa: E402
from guildmirror.api.routes.states import router as states_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("guildmirror API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("guildmirror API shutting down")


app = FastAPI(
    title="guildmirror Store API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(states_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
