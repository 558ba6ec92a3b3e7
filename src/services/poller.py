"""Background loop that refreshes the cost collector on a fixed cadence."""

from __future__ import annotations

import asyncio
import contextlib

from helpers.constants import APP_LOGGER
from helpers.errors import RefreshError
from services.cost_collector import CostCollector

LOGGER = APP_LOGGER.bind(component="poller")


class Poller:
    """Immediate refresh on start, then one refresh per ``interval`` seconds.

    Ticks that fall while a refresh is still running are dropped, not queued.
    """

    def __init__(self, collector: CostCollector, interval: float) -> None:
        self.collector = collector
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def run(self) -> None:
        LOGGER.info(msg="Performing initial cost data fetch")
        await self._refresh_once(initial=True)

        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            LOGGER.info(msg="Refreshing cost data")
            await self._refresh_once()

            now = loop.time()
            next_tick += self.interval
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval) + 1
                LOGGER.warning(msg="Refresh overran the polling interval", missed_ticks=missed)
                next_tick += missed * self.interval

    async def _refresh_once(self, initial: bool = False) -> None:
        try:
            await self.collector.refresh()
        except RefreshError as exc:
            if initial:
                LOGGER.warning(msg="Initial fetch had errors", error=str(exc), failed=exc.failed)
            else:
                LOGGER.error(msg="Refresh failed", error=str(exc), failed=exc.failed)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.critical(msg="Unexpected refresh failure", error=repr(exc))

    def start(self) -> asyncio.Task:
        """Schedule :meth:`run` on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="cost-poller")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop; an in-flight refresh is abandoned."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        LOGGER.info(msg="Poller shutting down")
