"""Async client for the SDNext HTTP API."""

from __future__ import annotations

import time
from typing import Any, List

import httpx

from .models import GenerationRequest, GenerationResponse

STATUS_PATH = "/sdapi/v1/system-info/status"
STATUS_PARAMS = {"state": "true", "memory": "true", "full": "true", "refresh": "true"}
LOG_PATH = "/sdapi/v1/log"
TXT2IMG_PATH = "/sdapi/v1/txt2img"
OPTIONS_PATH = "/sdapi/v1/options"


class SDNextClient:
    def __init__(
        self,
        *,
        base_url: str,
        probe_timeout: float,
        logger,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.probe_timeout = probe_timeout
        self.logger = logger
        # Generation requests are never cut short; only probes carry a timeout.
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=None)

    async def get_status(self) -> Any:
        response = await self._client.get(STATUS_PATH, params=STATUS_PARAMS, timeout=self.probe_timeout)
        response.raise_for_status()
        return response.json()

    async def get_logs(self, *, lines: int = 5, clear: bool = True) -> List[str]:
        params = {"lines": str(lines), "clear": "true" if clear else "false"}
        response = await self._client.get(LOG_PATH, params=params, timeout=self.probe_timeout)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            return []
        return [str(line) for line in data]

    async def enable_refiner(self, checkpoint: str) -> None:
        self.logger.info("Enabling refiner %s", checkpoint)
        response = await self._client.post(OPTIONS_PATH, json={"sd_model_refiner": checkpoint})
        response.raise_for_status()

    async def submit_job(self, request: GenerationRequest) -> GenerationResponse:
        start = time.perf_counter()
        response = await self._client.post(TXT2IMG_PATH, json=request.to_payload())
        elapsed = time.perf_counter() - start
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            self.logger.error("txt2img responded with HTTP %s", response.status_code)
            raise
        self.logger.debug("txt2img completed in %.2fs", elapsed)
        return GenerationResponse.from_payload(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["SDNextClient"]
