class ChatFilterError(Exception):
    pass


class PatternCompileError(ChatFilterError):
    """
    A filter line is not a valid regular expression.

    :param origin: The :class:`~chatfilter.filter.patterns.Origin` of the line.
    :param line_no: 1-based line number in the source.
    :param pattern: The offending source text.
    :param cause: The :class:`re.error` raised by the compiler.
    """
    def __init__(self, origin, line_no: int, pattern: str, cause: Exception):
        self.origin = origin
        self.line_no = line_no
        self.pattern = pattern
        self.cause = cause
        super().__init__("{!s} line {:d}: invalid pattern {!r}: {!s}"
            .format(origin, line_no, pattern, cause))


class SourceUnavailableError(ChatFilterError):
    """
    A pattern source could not be read: local file missing or unreadable, remote unreachable,
    timed out, or answered with something other than HTTP 200.
    """
    def __init__(self, origin, location: str, reason: str):
        self.origin = origin
        self.location = location
        self.reason = reason
        super().__init__("{!s} source {} unavailable: {}".format(origin, location, reason))
