"""Polls the SDNext server until it is listening and its model has loaded."""

from __future__ import annotations

import httpx

from .sdnext import SDNextClient
from .shutdown import GracefulShutdown


class ServerStartTimeout(TimeoutError):
    """The server never answered its status endpoint."""


class ModelLoadTimeout(TimeoutError):
    """The startup marker never appeared in the server log."""


class ReadinessProber:
    def __init__(
        self,
        client: SDNextClient,
        shutdown: GracefulShutdown,
        *,
        logger,
        max_attempts: int = 300,
        max_failures: int = 10,
        interval: float = 1.0,
        startup_marker: str = "Startup time:",
    ) -> None:
        self.client = client
        self.shutdown = shutdown
        self.logger = logger
        self.max_attempts = max_attempts
        self.max_failures = max_failures
        self.interval = interval
        self.startup_marker = startup_marker

    async def wait_for_server_ready(self) -> None:
        attempts = 0
        while not self.shutdown.is_triggered() and attempts < self.max_attempts:
            attempts += 1
            try:
                await self.client.get_status()
                return
            # A listening server can still answer with a half-rendered page.
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.debug("Status probe failed: %s", exc)
                self.logger.info("(%d/%d) Waiting for server to start...", attempts, self.max_attempts)
            await self._pause(attempts)
        if self.shutdown.is_triggered():
            return
        raise ServerStartTimeout(f"Server did not respond after {self.max_attempts} attempts")

    async def wait_for_model_loaded(self) -> None:
        attempts = 0
        failures = 0
        while not self.shutdown.is_triggered() and attempts < self.max_attempts:
            attempts += 1
            try:
                lines = await self.client.get_logs(lines=5, clear=True)
            except (httpx.HTTPError, ValueError):
                failures += 1
                if failures > self.max_failures:
                    raise
                self.logger.warning("(%d/%d) Request failed. Retrying...", failures, self.max_failures)
            else:
                if any(self.startup_marker in line for line in lines):
                    return
                for line in lines:
                    self.logger.debug("sdnext: %s", line)
                self.logger.info("(%d/%d) Waiting for model to load...", attempts, self.max_attempts)
            await self._pause(attempts)
        if self.shutdown.is_triggered():
            return
        raise ModelLoadTimeout("Timed out waiting for model to load")

    async def _pause(self, attempts: int) -> None:
        # No point sleeping once the attempt budget is spent.
        if attempts < self.max_attempts:
            await self.shutdown.wait(self.interval)


__all__ = ["ModelLoadTimeout", "ReadinessProber", "ServerStartTimeout"]
