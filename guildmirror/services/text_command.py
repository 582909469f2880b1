"""
guildmirror.services.text_command — HTTP Text-Command Collaborator
==================================================================

Forwards the content of an inbound message to an external text-command
service and returns its answer.

Wire format::

    POST <text_command_url>   {"text": "<message content>"}
    200                        {"response": "<answer>"}   (empty = no answer)
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class HttpTextCommandClient:

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    async def send(self, text: str) -> str | None:
        """Return the collaborator's response text, or ``None`` for no answer.

        Raises ``httpx.HTTPError`` on transport failure or a non-2xx status.
        """
        transport = httpx.AsyncHTTPTransport(retries=1)
        async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
            resp = await client.post(self.url, json={"text": text})
            resp.raise_for_status()

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Text command service returned non-JSON body")
            return None

        response = data.get("response") if isinstance(data, dict) else None
        return str(response) if response else None
