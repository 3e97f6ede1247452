"""
Filter sources: the local filter files, and the remote filter list fetched over HTTP.
"""

import asyncio
import logging
import os
import re
from typing import List, Optional, Tuple

import aiohttp

from chatfilter.driver.atomic_write import atomic_write
from chatfilter.filter.patterns import Origin

logger = logging.getLogger(__name__)

#: Connect and read timeouts for the remote filter list, in seconds.
REMOTE_CONNECT_TIMEOUT = 5
REMOTE_READ_TIMEOUT = 5

LINE_BREAK = re.compile(r'\r\n|\r|\n')

#: Header comments written to a filter file when it is first created.
DEFAULT_HEADERS = {
    Origin.CUSTOM: [
        "# " + Origin.CUSTOM.display_name,
        "# One pattern per line. Lines starting with # are comments.",
        "# Example: buy.*items",
    ],
    Origin.REMOTE: [
        "# " + Origin.REMOTE.display_name,
        "# One pattern per line. Lines starting with # are comments.",
        "# This file is automatically updated from the remote URL.",
    ],
}


class FilterFiles:
    """
    The local filter files, one per origin, in a single directory. The remote file holds the last
    successfully fetched remote list.

    :param directory: Directory holding ``custom.txt`` and ``remote.txt``.
    """
    def __init__(self, directory: str):
        self.directory = directory

    def path(self, origin: Origin) -> str:
        return os.path.join(self.directory, origin.filename)

    def ensure_defaults(self):
        """
        Create the filter directory and any missing filter file, with header comments only.
        Errors are logged, not raised.
        """
        try:
            os.makedirs(self.directory, exist_ok=True)
            for origin in Origin:
                path = self.path(origin)
                if not os.path.exists(path):
                    logger.info("Creating {} file: {}".format(origin.display_name, path))
                    self.write_lines(origin, DEFAULT_HEADERS[origin])
        except OSError as e:
            logger.error("Failed to create filter files in {}: {!s}".format(self.directory, e))

    def read_lines(self, origin: Origin) -> List[str]:
        """
        :raise FileNotFoundError: file does not exist
        :raise OSError: file could not be read
        :raise UnicodeDecodeError: file is not valid UTF-8
        """
        with open(self.path(origin), encoding='utf-8', newline='') as f:
            return split_lines(f.read())

    def write_lines(self, origin: Origin, lines: List[str]):
        """
        Overwrite a filter file atomically.
        :raise OSError: file could not be written
        """
        with atomic_write(self.path(origin), newline='\n') as f:
            for line in lines:
                f.write(line)
                f.write('\n')


def split_lines(text: str) -> List[str]:
    """
    Split text into lines at CR, LF or CRLF only. Other Unicode line separators stay part of the
    line. A final line break does not start another, empty line.
    """
    lines = LINE_BREAK.split(text)
    if lines[-1] == '':
        lines.pop()
    return lines


async def fetch_remote(url: str) -> Tuple[int, Optional[str]]:
    """
    GET the remote filter list.

    :return: The HTTP status, and the decoded body if the status is 200 (otherwise None).
    :raise aiohttp.ClientError: connection or protocol error, including an invalid URL
    :raise asyncio.TimeoutError: connect or read timeout
    """
    timeout = aiohttp.ClientTimeout(total=None,
                                    sock_connect=REMOTE_CONNECT_TIMEOUT,
                                    sock_read=REMOTE_READ_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as response:
            if response.status != 200:
                return response.status, None
            return response.status, await response.text(encoding='utf-8', errors='replace')


#: Errors from :func:`fetch_remote` (or a replacement fetcher) that mean "source unavailable".
FETCH_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError)
