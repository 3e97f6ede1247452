"""
Loading filter sources into the :class:`~chatfilter.filter.store.FilterStore`.

Each origin is loaded independently, and only ever replaces its own pattern set once its source
has been read and compiled successfully. A failed load leaves the previous set in place.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from chatfilter.errors import PatternCompileError, SourceUnavailableError
from chatfilter.filter.patterns import Origin, PatternSet
from chatfilter.filter.sources import FETCH_ERRORS, split_lines
from chatfilter.utils.logging import exc_log_str

if TYPE_CHECKING:
    from chatfilter.engine import FilterEngine

logger = logging.getLogger(__name__)


class RefreshResult:
    """
    Outcome of :meth:`RefreshPipeline.refresh`.

    :ivar custom: Number of custom patterns installed, or None if the custom leg was skipped or
        failed.
    :ivar remote: True if the remote list was fetched and installed, False if it failed, None if
        the remote leg was skipped.
    """
    __slots__ = ('custom', 'remote')

    def __init__(self, custom: Optional[int]=None, remote: Optional[bool]=None):
        self.custom = custom
        self.remote = remote

    @property
    def ok(self) -> bool:
        return self.remote is not False

    def __repr__(self):
        return 'RefreshResult<custom={!r}, remote={!r}>'.format(self.custom, self.remote)


class RefreshPipeline:
    """
    :param engine: The engine context. Settings, filter files, the store and the fetcher are read
        from it at the start of each operation.
    """
    def __init__(self, engine: 'FilterEngine'):
        self.engine = engine
        self._remote_lock = asyncio.Lock()

    def _compile(self, origin: Origin, lines) -> PatternSet:
        return PatternSet.compile(origin, lines, strict=self.engine.settings.strict_patterns)

    def load_custom(self) -> Optional[int]:
        """
        Load the custom filter file into the store. Synchronous.

        A missing file installs an empty custom set. Any other failure is logged, and the
        previous custom set is kept.

        :return: Number of patterns installed, or None on failure.
        """
        files = self.engine.files
        try:
            lines = files.read_lines(Origin.CUSTOM)
        except FileNotFoundError:
            logger.warning("Custom filter file not found: {}".format(files.path(Origin.CUSTOM)))
            lines = []
        except (OSError, UnicodeDecodeError) as e:
            err = SourceUnavailableError(Origin.CUSTOM, files.path(Origin.CUSTOM), exc_log_str(e))
            logger.error("Failed to load custom filters: {!s}".format(err))
            return None

        try:
            new_set = self._compile(Origin.CUSTOM, lines)
        except PatternCompileError as e:
            logger.error("Custom filters not updated: {!s}".format(e))
            return None

        self.engine.store.replace(Origin.CUSTOM, new_set)
        return len(new_set)

    def load_cached_remote(self) -> Optional[int]:
        """
        Load the last fetched remote list from its local file. Used at start-up, so that remote
        filters apply before the first fetch completes. Synchronous.

        :return: Number of patterns installed, or None if the file could not be used.
        """
        files = self.engine.files
        try:
            lines = files.read_lines(Origin.REMOTE)
            new_set = self._compile(Origin.REMOTE, lines)
        except (OSError, UnicodeDecodeError, PatternCompileError) as e:
            logger.warning("Cached remote filters not loaded: {}".format(exc_log_str(e)))
            return None

        self.engine.store.replace(Origin.REMOTE, new_set)
        return len(new_set)

    async def _fetch_lines(self, url: str):
        """
        :raise SourceUnavailableError: fetch failed or returned a non-200 status
        """
        try:
            status, body = await self.engine.fetch(url)
        except FETCH_ERRORS as e:
            raise SourceUnavailableError(Origin.REMOTE, url, exc_log_str(e)) from e

        if status != 200 or body is None:
            raise SourceUnavailableError(Origin.REMOTE, url, "HTTP status {}".format(status))
        return split_lines(body)

    async def refresh_remote(self) -> bool:
        """
        Fetch the remote filter list, install it, and save it to the remote filter file.
        Concurrent calls are serialised.

        Never raises for source errors: failures are logged and the previous remote set is kept.

        :return: True if a new remote set was installed.
        """
        async with self._remote_lock:
            url = self.engine.settings.remote_url
            logger.info("Fetching remote filters from {}".format(url))
            try:
                lines = await self._fetch_lines(url)
                new_set = self._compile(Origin.REMOTE, lines)
            except (SourceUnavailableError, PatternCompileError) as e:
                logger.warning("Remote filters not updated: {!s}".format(e))
                return False

            if not self.engine.settings.use_remote_filters:
                logger.info("Remote filters were disabled during fetch: discarding result")
                return False

            self.engine.store.replace(Origin.REMOTE, new_set)

            try:
                self.engine.files.write_lines(Origin.REMOTE, lines)
            except OSError as e:
                logger.warning("Failed to save remote filters to {}: {}"
                    .format(self.engine.files.path(Origin.REMOTE), exc_log_str(e)))
            return True

    async def refresh(self) -> RefreshResult:
        """
        Reload every enabled source: the custom file, then the remote list. Afterwards, update the
        auto-refresh schedule to match the current settings.
        """
        settings = self.engine.settings
        result = RefreshResult()

        if settings.use_custom_filters:
            result.custom = self.load_custom()

        if settings.use_remote_filters:
            result.remote = await self.refresh_remote()

        self.engine.auto_refresh.reconcile()
        logger.info("Filter refresh complete: {!r}".format(result))
        return result
