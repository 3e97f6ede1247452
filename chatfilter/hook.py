"""
Chat display hook.

The host chat pipeline hands each incoming message to :meth:`ChatInterceptor.on_message` instead
of displaying it directly. The interceptor consults the filter policy and passes allowed messages
on to a :class:`ChatSink`. Blocked messages are dropped, or in debug mode replaced by a notice
naming the filter responsible.
"""

import sys
from typing import Protocol, TextIO

from chatfilter.filter.policy import Decision, FilterPolicy
from chatfilter.filter.settings import FilterSettings
from chatfilter.utils.strings import natural_truncate

DEBUG_NOTICE_MAX_LEN = 256


class ChatSink(Protocol):
    """ Where chat messages end up: the host's chat display. """

    def deliver(self, message: str) -> None:
        ...


class ConsoleSink:
    """ Chat display that writes one message per line to a text stream. """

    def __init__(self, stream: TextIO=None):
        self.stream = stream if stream is not None else sys.stdout

    def deliver(self, message: str) -> None:
        self.stream.write(message + '\n')
        self.stream.flush()


def format_debug_notice(message: str, decision: Decision) -> str:
    return "[AdBlock] Message blocked ({}: {}): {}".format(
        decision.origin.filter_name if decision.origin else 'Unknown Filter',
        decision.pattern.source if decision.pattern else '?',
        natural_truncate(message, DEBUG_NOTICE_MAX_LEN))


class ChatInterceptor:
    """
    :param policy: Filter policy to consult for each message.
    :param settings: Filter settings; ``debug_mode`` is read on every blocked message.
    :param sink: Destination for allowed messages and debug notices.
    """
    def __init__(self, policy: FilterPolicy, settings: FilterSettings, sink: ChatSink):
        self.policy = policy
        self.settings = settings
        self.sink = sink

    def on_message(self, message: str) -> bool:
        """
        Filter one incoming chat message.

        :return: True if the message was delivered unchanged, False if it was blocked.
        """
        decision = self.policy.decide(message)
        if not decision.blocked:
            self.sink.deliver(message)
            return True

        if self.settings.debug_mode:
            self.sink.deliver(format_debug_notice(message, decision))
        return False
