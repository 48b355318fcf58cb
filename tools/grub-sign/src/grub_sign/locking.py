"""Process-level exclusion and signal-safe cleanup."""

import fcntl
import logging
import os
import signal
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from .errors import GrubSignError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


@contextmanager
def exclusive_lock(path: Path, timeout: float) -> Iterator[None]:
    """Hold an exclusive flock on path for the duration of the block.

    Raises:
        GrubSignError: Another process kept the lock for longer than timeout
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise GrubSignError(f"Another grub-sign operation is running (lock {path})")
                logger.debug("waiting for %s", path)
                time.sleep(POLL_INTERVAL)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _exit_handler(signum: int, frame: object) -> None:
    raise SystemExit(128 + signum)


@contextmanager
def exit_on_signals(signals: Sequence[int] = (signal.SIGTERM, signal.SIGHUP)) -> Iterator[None]:
    """Turn termination signals into SystemExit so cleanup handlers run."""
    previous = {signum: signal.signal(signum, _exit_handler) for signum in signals}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
