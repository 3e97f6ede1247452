import logging
from typing import Dict, Optional

from chatfilter.filter.patterns import Origin, PatternSet, MatchResult

logger = logging.getLogger(__name__)


class FilterStore:
    """
    Holds the current :class:`PatternSet` for each origin.

    Sets are immutable and only ever swapped whole by :meth:`replace`, which is a single reference
    assignment: a concurrent :meth:`query` sees either the complete old set or the complete new
    one. No lock is needed for readers.
    """
    def __init__(self):
        self._sets = {origin: PatternSet.empty(origin) for origin in Origin}  # type: Dict[Origin, PatternSet]

    def get(self, origin: Origin) -> PatternSet:
        return self._sets[origin]

    def replace(self, origin: Origin, new_set: PatternSet):
        """
        Install a new pattern set for an origin, discarding the previous one.
        """
        if new_set.origin is not origin:
            raise ValueError("Cannot install a {!s} set as {!s}".format(new_set.origin, origin))
        old_set = self._sets[origin]
        self._sets[origin] = new_set
        logger.info("Installed {:d} {} patterns (was {:d})"
            .format(len(new_set), origin.value, len(old_set)))

    def query(self, message: str, use_custom=True, use_remote=True) -> Optional[MatchResult]:
        """
        Check a message against the enabled origins. Custom patterns are checked first, so a
        message matching both is attributed to the custom list.

        :return: The first match, or `None` if no match
        """
        if use_custom:
            match = self._sets[Origin.CUSTOM].evaluate(message)
            if match is not None:
                return match
        if use_remote:
            match = self._sets[Origin.REMOTE].evaluate(message)
            if match is not None:
                return match
        return None

    def counts(self) -> Dict[Origin, int]:
        return {origin: len(pattern_set) for origin, pattern_set in self._sets.items()}
