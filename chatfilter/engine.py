import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from chatfilter.config import ChatFilterConfig
from chatfilter.filter.autorefresh import AutoRefresh
from chatfilter.filter.pipeline import RefreshPipeline, RefreshResult
from chatfilter.filter.policy import FilterPolicy
from chatfilter.filter.settings import FilterSettings
from chatfilter.filter.sources import FilterFiles, fetch_remote
from chatfilter.filter.store import FilterStore
from chatfilter.scheduler import Scheduler, Task

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Tuple[int, Optional[str]]]]

#: Settings that affect whether, and how often, the remote list is refreshed automatically.
AUTO_REFRESH_KEYS = frozenset({'auto_refresh_enabled', 'auto_refresh_delay', 'use_remote_filters'})


class FilterEngine:
    """
    The chat filter: settings, filter files, the pattern store, and the components that keep the
    store up to date and answer queries. Constructed and owned by the process entry point; each
    component receives the engine and reads what it needs from it.

    :param config: The config file. The ``filter`` section holds the filter settings; the
        ``core.filters_dir`` key locates the filter files.
    :param loop: Event loop for background refreshes.
    :param fetch: Coroutine function ``fetch(url) -> (status, body)`` used to download the remote
        list. Defaults to an HTTP GET with 5-second connect and read timeouts.
    :param filters_dir: Overrides ``core.filters_dir``.
    """
    def __init__(self,
                 config: ChatFilterConfig,
                 loop: asyncio.AbstractEventLoop,
                 *,
                 fetch: Fetcher=fetch_remote,
                 filters_dir: str=None,
                 auto_refresh_minute: float=60.0):
        self.config = config
        self.loop = loop
        self.fetch = fetch
        self.settings = FilterSettings(config)
        if filters_dir is None:
            filters_dir = config.resolve_path(config.get('core', 'filters_dir', 'filters'))
        self.files = FilterFiles(filters_dir)
        self.store = FilterStore()
        self.scheduler = Scheduler(loop, on_error=self._on_task_error)
        self.pipeline = RefreshPipeline(self)
        self.auto_refresh = AutoRefresh(self, minute=auto_refresh_minute)
        self.policy = FilterPolicy(self)
        self.initialized = False
        self._background = set()
        self._deferred_refresh = None  # type: Optional[asyncio.Handle]

        self.settings.add_listener(self._on_setting_changed)

    def _load_local(self):
        self.files.ensure_defaults()
        if self.settings.use_custom_filters:
            self.pipeline.load_custom()
        if self.settings.use_remote_filters:
            self.pipeline.load_cached_remote()
        self.initialized = True
        logger.info("Filters initialized: {!r}".format(self.store.counts()))

    def initialize(self):
        """
        Load the local filter files, then start a full refresh in the background. If the event
        loop is not running yet, the refresh starts as soon as it does. Synchronous, and does not
        wait on the network.
        """
        self._load_local()
        if self.loop.is_running():
            self.refresh_in_background()
        else:
            logger.debug("Event loop not running: refresh deferred until it starts")
            self._deferred_refresh = self.loop.call_soon(self._start_deferred_refresh)

    def _start_deferred_refresh(self):
        self._deferred_refresh = None
        self.refresh_in_background()

    async def start(self) -> RefreshResult:
        """
        Initialise from the local files, then refresh all sources and start auto-refresh.
        """
        if not self.initialized:
            self._load_local()
        return await self.pipeline.refresh()

    def refresh_in_background(self) -> asyncio.Task:
        """ Start :meth:`RefreshPipeline.refresh` as a task on the event loop. """
        refresh_task = self.loop.create_task(self.pipeline.refresh())
        self._background.add(refresh_task)
        refresh_task.add_done_callback(self._background.discard)
        return refresh_task

    def shutdown(self):
        """ Stop auto-refresh and cancel other scheduled and background work. """
        if self._deferred_refresh is not None:
            self._deferred_refresh.cancel()
            self._deferred_refresh = None
        self.auto_refresh.stop()
        self.scheduler.cancel_all()
        for refresh_task in list(self._background):
            refresh_task.cancel()

    def _on_setting_changed(self, key: str, value):
        if key in AUTO_REFRESH_KEYS:
            self.auto_refresh.reconcile()

    async def _on_task_error(self, task: Task, timestamp: float, exc: Exception):
        logger.error("Scheduled task {!s} failed: {!s}".format(task, exc))
