"""Detach the running process from its terminal."""

from __future__ import annotations

import os


def daemonize(nochdir: bool = False, noclose: bool = False) -> bool:
    """Start a new session so the process loses its controlling terminal.

    The process must not already lead a process group, since a new session
    cannot be started from one. Unless ``nochdir`` is set the process changes
    to the root directory; unless ``noclose`` is set its standard input,
    output and error are redirected to the null device. Failures are raised
    as ``OSError``.

    Returns True when the standard streams were redirected, False otherwise.
    """
    os.setsid()

    if not nochdir:
        os.chdir("/")

    if noclose:
        return False

    try:
        fd = os.open(os.devnull, os.O_RDWR)
    except OSError:
        return False

    for target in (0, 1, 2):
        os.dup2(fd, target)

    if fd > 2:
        os.close(fd)
    return True