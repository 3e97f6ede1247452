from chatfilter.utils.strings import natural_truncate


def message_log_str(message: str, max_len=120) -> str:
    """
    Convert a chat message to a one-line string suitable for logging. Long messages are truncated.
    """
    return repr(natural_truncate(message.replace('\n', ' '), max_len))


def exc_log_str(exception) -> str:
    """
    Format an exception as a "nice" one-liner string (does not include stack trace).
    """
    return "{}: {!s}".format(type(exception).__name__, exception)

