# src/streamsnap_library/background_refresher.py

import asyncio
import logging
from typing import Optional, Sequence

from .accounts.registry_base import AccountRegistryBase

lib_logger = logging.getLogger("streamsnap_library")

DEFAULT_REFRESH_INTERVAL_SECONDS = 600


class BackgroundRefresher:
    """
    A background task that periodically runs every registry's proactive
    token sweep so access tokens stay valid between uploads.
    """

    def __init__(
        self,
        registries: Sequence[AccountRegistryBase],
        interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ):
        self._registries = list(registries)
        self._interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Starts the background refresh task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            lib_logger.info(
                f"Background token refresher started. Check interval: {self._interval:g} seconds."
            )

    async def stop(self):
        """Stops the background refresh task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            lib_logger.info("Background token refresher stopped.")

    async def run_once(self) -> int:
        """Sweep every registry once; returns the total number of refreshed accounts."""
        total = 0
        for registry in self._registries:
            total += await registry.refresh_all_tokens()
        return total

    async def _run(self):
        """The main loop for the background task."""
        while True:
            try:
                await asyncio.sleep(self._interval)
                refreshed = await self.run_once()
                if refreshed:
                    lib_logger.info(f"Background refresh renewed {refreshed} token(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                lib_logger.error(f"Unexpected error in background refresher loop: {e}")
