"""
guildmirror — Discord Graph Mirror for a Hierarchical State Store
==================================================================
Mirrors the live state of every Discord server the bot can see (servers,
channels, members, users, presences, messages) into a hierarchical
key-value store, and turns writes on designated keys back into Discord
actions (send, reply, react, voice moderation).

Package layout::

    guildmirror/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Leaf names, icons, presence vocabulary
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # store_objects / store_states tables
    ├── engine/
    │   ├── paths.py       # Key-path grammar (build + match)
    │   ├── nodes.py       # Node definitions for every mirrored key
    │   ├── cache.py       # Write-suppression caches
    │   ├── registry.py    # Message-receive and text-command targets
    │   ├── auth.py        # User/role grant merging
    │   ├── payloads.py    # Outbound payload parsers
    │   └── events.py      # Gateway event envelope + dispatch loop
    ├── services/
    │   ├── object_store.py          # Hierarchical store on SQLAlchemy
    │   ├── store_notify.py          # PG LISTEN/NOTIFY bridge
    │   ├── remote_graph.py          # discord.py accessor
    │   ├── reconciliation_service.py # Full resync + mark-and-sweep
    │   ├── presence_service.py      # Presence projection
    │   ├── message_service.py       # Inbound message mirroring
    │   ├── text_command.py          # HTTP text-command collaborator
    │   ├── command_service.py       # Outbound send/sendFile/sendReply/sendReaction
    │   ├── voice_service.py         # Voice moderation + voice-state mirror
    │   ├── bot_presence.py          # bot.* control keys
    │   └── state_dispatcher.py      # Own-state write routing
    ├── bot/
    │   ├── core.py        # Bot subclass, wiring, cog loader
    │   └── cogs/
    │       ├── gateway.py # Gateway listeners → event dispatcher
    │       └── tasks.py   # Periodic resync
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # State/object REST endpoints
"""

__version__ = "0.1.0"
