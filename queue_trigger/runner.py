import asyncio
import logging
from typing import Optional

from queue_trigger.client import TriggerClient

logger = logging.getLogger(__name__)


class TriggerRunner:
    """
    Calls the process endpoint on a fixed interval. After a cycle that
    processed a job it goes again immediately, so a backlog drains without
    waiting out the interval between jobs.
    """

    def __init__(self, client: TriggerClient, interval: float = 60.0, max_cycles: Optional[int] = None):
        self.client = client
        self.interval = interval
        self.max_cycles = max_cycles
        self.cycles = 0
        self.running = False
        self._shutdown_event = asyncio.Event()

    async def run(self):
        self.running = True
        self._shutdown_event.clear()
        logger.info(f"Queue trigger started against {self.client.base_url} (interval={self.interval}s)")

        try:
            while self.running:
                result = await self.run_once()
                if self.max_cycles is not None and self.cycles >= self.max_cycles:
                    break

                if result and result.get("processed"):
                    continue

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("Queue trigger stopped")

    async def run_once(self) -> Optional[dict]:
        self.cycles += 1
        result = await self.client.process()
        if result is None:
            return None

        if result.get("processed"):
            logger.info(f"Processed job {result.get('jobId')}: {result.get('status')}")
        elif result.get("busy"):
            logger.info("Dispatcher busy, will retry next interval")
        else:
            logger.debug("No pending jobs")
        return result

    def stop(self):
        self.running = False
        self._shutdown_event.set()
