import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from chatfilter.scheduler import task, TaskInstance

if TYPE_CHECKING:
    from chatfilter.engine import FilterEngine

logger = logging.getLogger(__name__)


class AutoRefresh:
    """
    Periodically re-fetches the remote filter list.

    Stopped, or running at a fixed interval of ``auto_refresh_delay`` minutes. The first refresh
    happens one full interval after starting. At most one timer is active per instance; each
    refresh finishes before the next interval is waited for.

    :param engine: The engine context.
    :param minute: Length of a "minute" in seconds. Only changed by tests.
    """
    def __init__(self, engine: 'FilterEngine', minute: float=60.0):
        self.engine = engine
        self.minute = minute
        self._instance = None  # type: Optional[TaskInstance]
        self._interval = None  # type: Optional[int]

    @property
    def is_running(self) -> bool:
        return self._instance is not None and not self._instance.is_done()

    @property
    def interval(self) -> Optional[int]:
        """ Current interval in minutes, or None if stopped. """
        return self._interval if self.is_running else None

    def reconcile(self):
        """
        Start, restart or stop the timer to match the current settings. Restarting always waits a
        full interval before the next refresh.
        """
        settings = self.engine.settings
        if settings.auto_refresh_enabled and settings.use_remote_filters:
            self.start(settings.auto_refresh_delay)
        else:
            self.stop()

    def start(self, delay_minutes: int):
        self.stop()
        delay = delay_minutes * self.minute
        self._interval = delay_minutes
        self._instance = self.engine.scheduler.schedule_task_in(
            self.refresh_task, delay, every=delay)
        logger.info("Auto-refresh scheduled every {:d} minutes".format(delay_minutes))

    def stop(self):
        """ Cancel the pending timer, if any. A refresh already in progress runs to completion. """
        instance, self._instance = self._instance, None
        self._interval = None
        if instance is not None and not instance.is_done():
            try:
                instance.cancel()
            except asyncio.InvalidStateError:
                pass  # finished in the meantime
            else:
                logger.info("Auto-refresh stopped")

    @task(is_unique=True)
    async def refresh_task(self):
        logger.info("Auto-refreshing remote filters...")
        # shielded: stopping the timer must not abort a fetch in progress
        await asyncio.shield(self.engine.pipeline.refresh_remote())

    @refresh_task.error
    async def on_refresh_error(self, exc: Exception):
        logger.error("Auto-refresh failed; will retry next interval")
