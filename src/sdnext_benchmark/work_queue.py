"""HTTP client for the remote work queue."""

from __future__ import annotations

from typing import List
from urllib.parse import quote

import httpx

from .models import QueueMessage


class QueueClient:
    def __init__(
        self,
        *,
        base_url: str,
        queue_name: str,
        auth_header: str,
        api_key: str | None,
        timeout: float,
        logger,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.queue_name = queue_name
        self.logger = logger
        headers = {auth_header: api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._headers = headers

    async def fetch_messages(self) -> List[QueueMessage]:
        response = await self._client.get(f"/{quote(self.queue_name)}", headers=self._headers)
        response.raise_for_status()
        payload = response.json()
        raw_messages = payload.get("messages") if isinstance(payload, dict) else None
        if not raw_messages:
            return []
        messages: List[QueueMessage] = []
        for raw in raw_messages:
            try:
                messages.append(QueueMessage.from_payload(raw))
            except ValueError as exc:
                # Without an id the message cannot be deleted; leave it to the queue's retention.
                self.logger.error("Ignoring queue entry: %s", exc)
        return messages

    async def delete_message(self, message_id: str) -> None:
        response = await self._client.delete(
            f"/{quote(self.queue_name)}/{quote(message_id)}", headers=self._headers
        )
        response.raise_for_status()
        self.logger.debug("Deleted queue message %s", message_id)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["QueueClient"]
