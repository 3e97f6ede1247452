"""
The ``/adblock`` chat command.

Each subcommand changes one filter setting, or reports on or refreshes the filters, and answers
through a feedback callable (normally the chat display). Settings changes take effect immediately:
the engine follows them through its settings listener.
"""

import asyncio
import logging
import shlex
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from chatfilter.filter.patterns import Origin
from chatfilter.filter.pipeline import RefreshResult
from chatfilter.utils.strings import format_on_off

if TYPE_CHECKING:
    from chatfilter.engine import FilterEngine

logger = logging.getLogger(__name__)

COMMAND_NAME = 'adblock'
COMMAND_PREFIX = '/' + COMMAND_NAME

Feedback = Callable[[str], None]

HELP_LINES = (
    ("/adblock enable", "Enable the AdBlock filter"),
    ("/adblock disable", "Disable the AdBlock filter"),
    ("/adblock status", "Show current filter status"),
    ("/adblock refresh", "Refresh filter lists"),
    ("/adblock remote enable|disable", "Enable/disable remote filters"),
    ("/adblock remote url <url>", "Set remote filter URL"),
    ("/adblock custom enable|disable", "Enable/disable custom filters"),
    ("/adblock debug enable|disable", "Enable/disable debug mode (shows blocked messages)"),
    ("/adblock autorefresh enable|disable",
        "Enable/disable automatic refreshing of remote filters"),
    ("/adblock autorefresh delay <minutes>",
        "Set the delay between automatic refreshes (in minutes)"),
)


class UsageError(ValueError):
    """ A malformed ``/adblock`` command line. The message is shown to the user. """
    pass


def is_command(line: str) -> bool:
    """ Whether a line typed into chat is an ``/adblock`` command. """
    parts = line.strip().split(maxsplit=1)
    return bool(parts) and parts[0].lower() == COMMAND_PREFIX


def parse_switch(arg: str) -> bool:
    arg = arg.lower()
    if arg in ('enable', 'on'):
        return True
    elif arg in ('disable', 'off'):
        return False
    else:
        raise UsageError("Expected 'enable' or 'disable', got {!r}".format(arg))


def parse_minutes(arg: str) -> int:
    try:
        minutes = int(arg)
    except ValueError:
        raise UsageError("Delay must be a whole number of minutes: {!r}".format(arg))
    if minutes < 1:
        raise UsageError("Delay must be at least 1 minute")
    return minutes


class FilterCommands:
    """
    :param engine: The engine context.
    :param feedback: Called with each line of user-facing output.
    """
    def __init__(self, engine: 'FilterEngine', feedback: Feedback):
        self.engine = engine
        self.feedback = feedback
        self._handlers = {
            'enable': self.enable,
            'disable': self.disable,
            'status': self.status,
            'refresh': self.refresh,
            'help': self.help,
            'remote': self.remote,
            'custom': self.custom,
            'debug': self.debug,
            'autorefresh': self.autorefresh,
        }  # type: Dict[str, Callable[[List[str]], Optional[asyncio.Task]]]

    @property
    def settings(self):
        return self.engine.settings

    def run_line(self, line: str) -> Optional[asyncio.Task]:
        """
        Run a full command line as typed into chat, e.g. ``/adblock remote url https://...``.
        """
        try:
            args = shlex.split(line)
        except ValueError as e:
            self.feedback("Invalid command: {!s}".format(e))
            return None
        if args and args[0].lower() == COMMAND_PREFIX:
            args = args[1:]
        return self.dispatch(args)

    def dispatch(self, args: Sequence[str]) -> Optional[asyncio.Task]:
        """
        Run a subcommand.

        :param args: Arguments after ``/adblock``. No arguments shows the help.
        :return: The background refresh task, if the command started one.
        """
        if not args:
            return self.help([])

        name, rest = args[0].lower(), list(args[1:])
        try:
            handler = self._handlers[name]
        except KeyError:
            self.feedback("Unknown subcommand {!r}. Type /adblock help for commands.".format(name))
            return None

        try:
            return handler(rest)
        except UsageError as e:
            logger.debug("Bad command {!r}: {!s}".format(' '.join(args), e))
            self.feedback("{!s}. Type /adblock help for commands.".format(e))
            return None

    @staticmethod
    def _expect_args(args: List[str], count: int, usage: str):
        if len(args) != count:
            raise UsageError("Usage: {}".format(usage))

    def enable(self, args: List[str]):
        self._expect_args(args, 0, "/adblock enable")
        self.settings.enabled = True
        self.feedback("AdBlock has been enabled")

    def disable(self, args: List[str]):
        self._expect_args(args, 0, "/adblock disable")
        self.settings.enabled = False
        self.feedback("AdBlock has been disabled")

    def status(self, args: List[str]):
        self._expect_args(args, 0, "/adblock status")
        s = self.settings
        counts = self.engine.store.counts()
        self.feedback("=== AdBlock Status ===")
        self.feedback("Enabled: {}".format(format_on_off(s.enabled)))
        self.feedback("Remote filters: {} ({:d} patterns)".format(
            format_on_off(s.use_remote_filters), counts[Origin.REMOTE]))
        self.feedback("Remote URL: {}".format(s.remote_url))
        self.feedback("Auto-refresh: {}".format(format_on_off(s.auto_refresh_enabled)))
        self.feedback("Auto-refresh delay: {:d} minutes".format(s.auto_refresh_delay))
        self.feedback("Custom filters: {} ({:d} patterns)".format(
            format_on_off(s.use_custom_filters), counts[Origin.CUSTOM]))
        self.feedback("Debug mode: {}".format(format_on_off(s.debug_mode)))

    def help(self, args: List[str]):
        self.feedback("=== AdBlock Commands ===")
        for usage, description in HELP_LINES:
            self.feedback("{} - {}".format(usage, description))

    def refresh(self, args: List[str]) -> asyncio.Task:
        self._expect_args(args, 0, "/adblock refresh")
        return self._start_refresh()

    def _start_refresh(self) -> asyncio.Task:
        self.feedback("Refreshing filters...")
        refresh_task = self.engine.refresh_in_background()
        refresh_task.add_done_callback(self._on_refresh_done)
        return refresh_task

    def _on_refresh_done(self, refresh_task: asyncio.Task):
        if refresh_task.cancelled():
            return
        exc = refresh_task.exception()
        if exc is not None:
            logger.error("Filter refresh failed", exc_info=exc)
            self.feedback("Filter refresh failed: {!s}".format(exc))
            return

        result = refresh_task.result()  # type: RefreshResult
        if result.ok:
            self.feedback("Filters refreshed successfully")
        else:
            self.feedback("Could not download remote filters; keeping the previous list")

    def remote(self, args: List[str]) -> Optional[asyncio.Task]:
        if len(args) == 2 and args[0].lower() == 'url':
            return self._set_remote_url(args[1])
        self._expect_args(args, 1, "/adblock remote enable|disable, /adblock remote url <url>")

        enable = parse_switch(args[0])
        self.settings.use_remote_filters = enable
        if enable:
            self.feedback("Remote filters have been enabled")
            return self._start_refresh()
        else:
            self.feedback("Remote filters have been disabled")
            return None

    def _set_remote_url(self, url: str) -> Optional[asyncio.Task]:
        self.settings.remote_url = url
        self.feedback("Remote URL set to: {}".format(url))
        if self.settings.use_remote_filters:
            return self._start_refresh()
        else:
            self.feedback("Note: Remote filters are currently disabled. "
                          "Use /adblock remote enable to enable them.")
            return None

    def custom(self, args: List[str]) -> Optional[asyncio.Task]:
        self._expect_args(args, 1, "/adblock custom enable|disable")
        enable = parse_switch(args[0])
        self.settings.use_custom_filters = enable
        if enable:
            self.feedback("Custom filters have been enabled")
            return self._start_refresh()
        else:
            self.feedback("Custom filters have been disabled")
            return None

    def debug(self, args: List[str]):
        self._expect_args(args, 1, "/adblock debug enable|disable")
        enable = parse_switch(args[0])
        self.settings.debug_mode = enable
        if enable:
            self.feedback("Debug mode has been enabled. Blocked messages will be shown.")
        else:
            self.feedback("Debug mode has been disabled. Blocked messages will be silently removed.")

    def autorefresh(self, args: List[str]):
        if len(args) == 2 and args[0].lower() == 'delay':
            return self._set_delay(args[1])
        self._expect_args(args, 1,
            "/adblock autorefresh enable|disable, /adblock autorefresh delay <minutes>")

        enable = parse_switch(args[0])
        self.settings.auto_refresh_enabled = enable
        if enable:
            self.feedback("Auto-refresh has been enabled. Remote filters will refresh every "
                          "{:d} minutes.".format(self.settings.auto_refresh_delay))
        else:
            self.feedback("Auto-refresh has been disabled.")

    def _set_delay(self, arg: str):
        minutes = parse_minutes(arg)
        self.settings.auto_refresh_delay = minutes
        self.feedback("Auto-refresh delay set to {:d} minutes.".format(minutes))
        if not self.settings.auto_refresh_enabled:
            self.feedback("Note: Auto-refresh is currently disabled. "
                          "Use /adblock autorefresh enable to enable it.")
