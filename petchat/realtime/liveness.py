"""Periodic liveness check for the realtime connection.

Catches a transport that claims to be up but has silently died, and one
that stayed down after its own reconnection should have recovered it.
"""

import asyncio
import logging
from typing import Callable, Optional

from petchat import config

logger = logging.getLogger("petchat")


class LivenessMonitor:
    """Runs a check callback every ``interval`` seconds while started.

    The callback decides whether to reconnect and must return True when
    it triggered one. The monitor holds no reference to the connection
    itself, so it can only ask, never mutate.
    """

    def __init__(self, check: Callable[[], bool], interval: Optional[float] = None):
        self._check = check
        self.interval = interval if interval is not None else config.LIVENESS_INTERVAL
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """(Re)start the timer. Any previous timer is cancelled first."""
        self.stop()
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Liveness monitor: started ({self.interval}s interval)")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Liveness monitor: stopped")
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if self._check():
                    logger.info("Liveness monitor: transport down, reconnect triggered")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep ticking; the next check may succeed
                logger.warning(f"Liveness monitor: check failed: {e}")
