"""
Compiled filter patterns.

A filter source is line-oriented text: one regular expression per line, matched case-insensitively
anywhere in a chat message. Blank lines and lines starting with ``#`` are ignored.

For example, the line ``buy.*items`` will match 'Buy NOW Items cheap!!' and 'come buy my items',
but not 'items to buy'.
"""

import enum
import logging
import re
from typing import Iterable, Optional, Tuple

from chatfilter.errors import PatternCompileError

logger = logging.getLogger(__name__)


class Origin(enum.Enum):
    CUSTOM = 'custom'
    REMOTE = 'remote'

    @property
    def filename(self) -> str:
        return '{}.txt'.format(self.value)

    @property
    def display_name(self) -> str:
        return '{} Filters'.format(self.value.capitalize())

    @property
    def filter_name(self) -> str:
        """ Name of a single filter from this origin, as shown in debug notices. """
        return '{} Filter'.format(self.value.capitalize())

    def __str__(self):
        return self.display_name


class FilterPattern:
    """
    One compiled filter line. Immutable.

    :param origin: Where the pattern came from.
    :param source: The line as written in the filter source.
    :param line_no: 1-based line number in the source.
    """
    __slots__ = ('_origin', '_source', '_line_no', '_regex')

    def __init__(self, origin: Origin, source: str, line_no: int=0):
        self._origin = origin
        self._source = source
        self._line_no = line_no
        self._regex = re.compile(source, re.IGNORECASE)

    @property
    def origin(self) -> Origin:
        return self._origin

    @property
    def source(self) -> str:
        return self._source

    @property
    def line_no(self) -> int:
        return self._line_no

    @property
    def regex(self) -> re.Pattern:
        return self._regex

    def search(self, message: str) -> bool:
        return self._regex.search(message) is not None

    def __eq__(self, other):
        if not isinstance(other, FilterPattern):
            return NotImplemented
        return (self._origin, self._source, self._line_no) == \
               (other._origin, other._source, other._line_no)

    def __hash__(self):
        return hash((self._origin, self._source, self._line_no))

    def __str__(self):
        return self._source

    def __repr__(self):
        return 'FilterPattern<{}:{:d} {!r}>'.format(self._origin.value, self._line_no, self._source)


class MatchResult:
    """ A positive filter match: which pattern, from which origin. """
    __slots__ = ('origin', 'pattern')

    def __init__(self, pattern: FilterPattern):
        self.origin = pattern.origin
        self.pattern = pattern

    def __eq__(self, other):
        if not isinstance(other, MatchResult):
            return NotImplemented
        return self.pattern == other.pattern

    def __repr__(self):
        return 'MatchResult<{!r}>'.format(self.pattern)


def is_pattern_line(line: str) -> bool:
    return bool(line.strip()) and not line.startswith('#')


class PatternSet:
    """
    Ordered, immutable collection of patterns from one origin. Refreshing a source builds a new
    PatternSet rather than modifying the existing one.
    """
    __slots__ = ('_origin', '_patterns')

    def __init__(self, origin: Origin, patterns: Iterable[FilterPattern]=()):
        self._origin = origin
        self._patterns = tuple(patterns)  # type: Tuple[FilterPattern, ...]
        for p in self._patterns:
            if p.origin is not origin:
                raise ValueError("Pattern {!r} does not belong to {!s}".format(p, origin))

    @classmethod
    def empty(cls, origin: Origin) -> 'PatternSet':
        return cls(origin)

    @classmethod
    def compile(cls, origin: Origin, lines: Iterable[str], strict=False) -> 'PatternSet':
        """
        Compile filter source lines into a PatternSet.

        :param origin: The origin to tag all patterns with.
        :param lines: Source lines. Line endings are stripped.
        :param strict: If False, an invalid regular expression is logged and skipped. If True,
            it raises instead.
        :raise PatternCompileError: invalid pattern in strict mode
        """
        patterns = []
        skipped = 0
        for line_no, line in enumerate(lines, start=1):
            line = line.rstrip('\r\n')
            if not is_pattern_line(line):
                continue
            try:
                patterns.append(FilterPattern(origin, line, line_no))
            except re.error as e:
                err = PatternCompileError(origin, line_no, line, e)
                if strict:
                    raise err from e
                logger.warning("Skipping filter: {!s}".format(err))
                skipped += 1

        logger.debug("Compiled {:d} {} patterns ({:d} skipped)"
            .format(len(patterns), origin.value, skipped))
        return cls(origin, patterns)

    @property
    def origin(self) -> Origin:
        return self._origin

    @property
    def patterns(self) -> Tuple[FilterPattern, ...]:
        return self._patterns

    def evaluate(self, message: str) -> Optional[MatchResult]:
        """
        Check a message against the patterns, in source order.

        :return: The first matching pattern, or `None` if no match.
        """
        for pattern in self._patterns:
            if pattern.search(message):
                return MatchResult(pattern)
        return None

    def __len__(self):
        return len(self._patterns)

    def __iter__(self):
        return iter(self._patterns)

    def __bool__(self):
        return bool(self._patterns)

    def __repr__(self):
        return 'PatternSet<{}, {:d} patterns>'.format(self._origin.value, len(self._patterns))
