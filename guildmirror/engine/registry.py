"""
guildmirror.engine.registry — Message Target Registry
=====================================================

Owned state that the ingestion router consults before mirroring a message:

- the set of key prefixes (text channels and users) whose message leaves
  exist, so a message for a channel the mirror has not created yet is dropped
- the set of ``.message`` leaf paths whose per-node custom config enables
  text-command forwarding

Both sets are purged when the sweep deletes a subtree.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class TargetRegistry:

    def __init__(self) -> None:
        self._message_targets: set[str] = set()
        self._text_command_paths: set[str] = set()

    # -------------------------------------------------------------------
    # Message-receive targets
    # -------------------------------------------------------------------
    def register_message_target(self, prefix: str) -> None:
        self._message_targets.add(prefix)

    def accepts_messages(self, prefix: str) -> bool:
        return prefix in self._message_targets

    @property
    def message_targets(self) -> frozenset[str]:
        return frozenset(self._message_targets)

    # -------------------------------------------------------------------
    # Text-command forwarding
    # -------------------------------------------------------------------
    def apply_custom(self, path: str, custom: dict[str, Any] | None) -> bool:
        """Update text-command forwarding for *path* from its custom config.

        Returns the resulting enabled flag.
        """
        enabled = bool(
            custom
            and custom.get("enabled")
            and custom.get("enableText2command")
        )
        if enabled:
            self._text_command_paths.add(path)
        else:
            self._text_command_paths.discard(path)
        logger.debug("Text command forwarding for %s: %s", path, enabled)
        return enabled

    def text_command_enabled(self, path: str) -> bool:
        return path in self._text_command_paths

    # -------------------------------------------------------------------
    # Purge
    # -------------------------------------------------------------------
    def purge_subtree(self, prefix: str) -> None:
        below = prefix + "."
        self._message_targets = {
            p for p in self._message_targets if p != prefix and not p.startswith(below)
        }
        self._text_command_paths = {
            p for p in self._text_command_paths if not p.startswith(below)
        }
