import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Rate-limited progress tracker for one file transfer.

    Emits at most one log line per `interval` seconds instead of one per
    chunk, so non-TTY output (docker logs, CI) is not flooded.

    Note: Tracks bytes downloaded.
    """

    def __init__(self, desc: str, total: int = 0, interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.desc = desc
        self.total = total
        self.interval = interval
        self.clock = clock
        self.n = 0
        self.emitted = 0
        self.last_log_time = clock()

    def update(self, n: int) -> None:
        self.n += n
        now = self.clock()
        if now - self.last_log_time < self.interval:
            return

        if self.total > 0:
            percent = self.n / self.total * 100
            logger.info("%s: %.1f%% (%d/%d bytes)", self.desc, percent, self.n, self.total)
        else:
            logger.info("%s: %d bytes downloaded", self.desc, self.n)
        self.emitted += 1
        self.last_log_time = now

    def close(self) -> None:
        if self.n > 0:
            logger.debug("%s: Completed %.2f MB", self.desc, self.n / (1024 * 1024))

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
