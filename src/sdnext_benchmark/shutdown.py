"""Cancellation token flipped by SIGINT/SIGTERM."""

from __future__ import annotations

import asyncio
import signal
from typing import Iterable


class GracefulShutdown:
    """Checked at the top of every loop iteration and inside every poll.

    Triggering never aborts an in-flight request; it only stops new work
    and cuts short any pending ``wait``.
    """

    def __init__(self) -> None:
        self._stopping = asyncio.Event()
        self._installed = False

    def install(self, signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM)) -> None:
        if self._installed:
            return
        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.trigger)
            except NotImplementedError:  # pragma: no cover - windows
                signal.signal(sig, lambda *_: self.trigger())
        self._installed = True

    def trigger(self) -> None:
        self._stopping.set()

    def is_triggered(self) -> bool:
        return self._stopping.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep for ``timeout`` seconds, returning early (True) on shutdown."""

        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


__all__ = ["GracefulShutdown"]
