import logging
from typing import TYPE_CHECKING, Optional

from chatfilter.filter.patterns import Origin, FilterPattern, MatchResult
from chatfilter.utils.logging import message_log_str

if TYPE_CHECKING:
    from chatfilter.engine import FilterEngine

logger = logging.getLogger(__name__)


class Decision:
    """
    Whether to block a chat message. A blocked decision carries the pattern responsible, for debug
    display; callers that only need the verdict can test the decision as a bool.
    """
    __slots__ = ('blocked', 'origin', 'pattern')

    def __init__(self, blocked: bool, origin: Origin=None, pattern: FilterPattern=None):
        self.blocked = blocked
        self.origin = origin
        self.pattern = pattern

    @classmethod
    def from_match(cls, match: Optional[MatchResult]) -> 'Decision':
        if match is None:
            return NOT_BLOCKED
        return cls(True, match.origin, match.pattern)

    def __bool__(self):
        return self.blocked

    def __eq__(self, other):
        if not isinstance(other, Decision):
            return NotImplemented
        return (self.blocked, self.origin, self.pattern) == \
               (other.blocked, other.origin, other.pattern)

    def __repr__(self):
        if not self.blocked:
            return 'Decision<allow>'
        return 'Decision<block {!s}: {!s}>'.format(self.origin, self.pattern)


NOT_BLOCKED = Decision(False)


class FilterPolicy:
    """
    Decides, per chat message, whether it should be blocked. Settings are read on each call.

    :param engine: The engine context.
    """
    def __init__(self, engine: 'FilterEngine'):
        self.engine = engine

    def decide(self, message: str) -> Decision:
        """
        Check a chat message against the installed filters. Never waits on the network: this
        reads whatever pattern sets are currently installed.

        If the engine has not been initialised yet, the local filter files are loaded first.
        """
        if not self.engine.initialized:
            self.engine.initialize()

        settings = self.engine.settings
        if not settings.enabled:
            return NOT_BLOCKED

        match = self.engine.store.query(message,
                                        use_custom=settings.use_custom_filters,
                                        use_remote=settings.use_remote_filters)
        decision = Decision.from_match(match)
        if decision.blocked:
            logger.debug("Blocked by {!s} {!r}: {}"
                .format(decision.origin, decision.pattern.source, message_log_str(message)))
        return decision
