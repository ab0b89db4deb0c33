"""Outbound notices posted to the chat transport's webhook."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class HttpNotifier:
    """Posts ``{"thread_id", "text"}`` JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client

    async def send(self, thread_id: str, text: str) -> None:
        payload = {"thread_id": thread_id, "text": text}
        if self._client is not None:
            r = await self._client.post(self._url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                r = await client.post(self._url, json=payload, timeout=self._timeout)
        r.raise_for_status()
        logger.debug("Posted notice to thread %s", thread_id)
