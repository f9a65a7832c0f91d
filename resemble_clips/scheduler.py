"""The single periodic driver that advances in-flight clip requests."""
import asyncio
import logging
import time
from typing import Callable, Optional

from .exceptions import ConfigurationError


class Scheduler:
    """
    Calls `tick(now)` every `interval` seconds from one asyncio task.

    `start()` is idempotent, so at most one driver is ever active. `stop()` may
    be called from inside a tick; the task then exits at its next await.
    """

    def __init__(self, tick: Callable[[float], None], interval: float,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initializes the Scheduler.

        Args:
            tick: Called with the current clock reading. Must not block.
            interval: Seconds to sleep between ticks.
            clock: Time source; injectable for tests.
        """
        self.tick = tick
        self.interval = interval
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Starts the tick loop on the running event loop if it isn't already running."""
        if self.is_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ConfigurationError("The scheduler needs a running asyncio event loop.") from e
        self._task = loop.create_task(self._run(), name="clip-request-scheduler")
        self._task.add_done_callback(self._handle_task_exception)
        self.logger.debug("Scheduler started.")

    def stop(self):
        """Stops the tick loop."""
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
        self.logger.debug("Scheduler stopped.")

    async def _run(self):
        while True:
            try:
                self.tick(self.clock())
            except Exception:
                self.logger.exception("Unhandled error during scheduler tick:")
            await asyncio.sleep(self.interval)

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log an unexpected exit of the tick loop."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Expected
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")
