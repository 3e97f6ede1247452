"""
Safe atomic file write.

Filter lists and configuration are rewritten while the client is running. Writing straight into
the target file risks leaving a truncated file behind if the process dies mid-write, so writes go
to a temporary file in the same directory which then replaces the original in one rename.

Adapted from: https://github.com/ActiveState/code/blob/3b27230f418b714bc9a0f897cb8ea189c3515e99/
              recipes/Python/579097_Safely_atomically_write/recipe-579097.py

Original author: Steven D'Aprano

LICENCE
-------

Copyright 2016 Steven D'Aprano

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and
associated documentation files (the "Software"), to deal in the Software without restriction,
including without limitation the rights to use, copy, modify, merge, publish, distribute,
sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial
portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT
NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES
OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

import contextlib
import os
import stat
import tempfile


@contextlib.contextmanager
def atomic_write(filename, encoding='utf-8', newline=None, suffix='.tmp', prefix='chatfilter'):
    """
    Context manager that yields a text file handle; on a clean exit of the with-block, the written
    content replaces ``filename`` atomically (on POSIX, and on Windows via :func:`os.replace`).

    >>> with atomic_write("custom.txt") as f:  # doctest: +SKIP
    ...     f.write("buy.*items\\n")

    If an exception escapes the with-block, ``filename`` is left untouched and the temporary file
    is removed.

    The permission bits of an existing ``filename`` are carried over to the new file. A new file
    gets the process's default permissions rather than the private mode of the temporary file.
    """
    filename = os.path.abspath(filename)
    try:
        mode = stat.S_IMODE(os.stat(filename).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        mode = 0o666 & ~umask

    fd, tmp = tempfile.mkstemp(suffix=suffix, prefix=prefix, dir=os.path.dirname(filename),
                               text=True)
    try:
        with os.fdopen(fd, 'w', encoding=encoding, newline=newline) as f:
            yield f
        os.chmod(tmp, mode)
        os.replace(tmp, filename)
        tmp = None
    finally:
        if tmp is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
