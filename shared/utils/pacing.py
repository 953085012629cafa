"""
Fixed-delay pacing for calls against rate-limited external services.
"""

import time
from typing import Callable, Optional

from shared.app_logging.logger import get_logger

logger = get_logger("curator.pacing")


class FixedDelayPacer:
    """
    Enforce a minimum gap between the end of one call and the start of the next.

    ``wait()`` is called before every call and ``mark_done()`` after it; the
    first call goes through immediately, later calls sleep until ``delay``
    seconds have passed since the previous call finished. Callers that never
    mark completion are paced from the previous release instead. The clock and
    sleep functions are injectable so callers can be tested without real timers.
    """

    def __init__(
        self,
        delay: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.delay = delay
        self._clock = clock
        self._sleep = sleep
        self._last_mark: Optional[float] = None

    def wait(self) -> float:
        """Block until the next call may go out. Returns the time slept."""
        slept = 0.0
        if self._last_mark is not None:
            remaining = self.delay - (self._clock() - self._last_mark)
            if remaining > 0:
                logger.debug(f"Pacing: sleeping {remaining:.2f}s before next call")
                self._sleep(remaining)
                slept = remaining
        self._last_mark = self._clock()
        return slept

    def mark_done(self) -> None:
        """Record that the current call has finished, successful or not."""
        self._last_mark = self._clock()

    def reset(self) -> None:
        self._last_mark = None
