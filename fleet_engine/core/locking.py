# fleet_engine/core/locking.py
"""Host-level advisory lock shared by convergence, backup and restore."""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from fleet_engine.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class HostLock:
    """
    Exclusive ``flock`` on a lock file.

    One instance per host path. Acquisition polls until ``timeout_seconds``
    elapses, then raises ``LockTimeoutError`` without touching anything else.
    """

    def __init__(
        self,
        lock_path: Path,
        timeout_seconds: float = 60.0,
        poll_interval: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lock_path = Path(lock_path)
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    @contextmanager
    def hold(self, operation: str, timeout_seconds: float | None = None) -> Iterator[float]:
        """Hold the lock for ``operation``; yields the wait time in seconds."""
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o640)
        started = self._clock()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    waited = self._clock() - started
                    if waited >= timeout:
                        raise LockTimeoutError(
                            f"{operation}: host lock {self.lock_path} not acquired within {timeout}s"
                        )
                    self._sleep(self.poll_interval)

            waited = self._clock() - started
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()} {operation}\n".encode("utf-8"))
            logger.info(f"[lock] acquired for {operation} after {waited:.2f}s")

            try:
                yield waited
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.info(f"[lock] released for {operation}")
        finally:
            os.close(fd)
