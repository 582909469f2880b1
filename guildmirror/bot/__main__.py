"""
guildmirror.bot.__main__ — Entry point for ``python -m guildmirror.bot``
========================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure the store tables exist.
4. Create the MirrorBot (it builds the store, caches and services).
5. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m guildmirror.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from guildmirror.bot.core import MirrorBot
from guildmirror.config import load_config
from guildmirror.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("guildmirror")


def main() -> None:
    """Bootstrap and run the mirror bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config(os.getenv("GUILDMIRROR_CONFIG", "config.yaml"))
    logger.info("Config loaded — namespace: %s", cfg.namespace)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = MirrorBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting guildmirror bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
