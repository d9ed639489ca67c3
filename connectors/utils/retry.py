"""
Delay policy for endpoints that answer "accepted, still computing".
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-delay retry policy.

    :param delay_seconds: Seconds to wait before each retry.
    :param max_retries: Number of retries after the first attempt.
    :param sleep: Callable used to wait; tests pass a no-op.
    """

    delay_seconds: float = 3.0
    max_retries: int = 1
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def wait(self, attempt: int) -> None:
        if self.delay_seconds <= 0:
            return
        logger.debug(
            "Waiting %.1fs before retry %d/%d", self.delay_seconds, attempt, self.max_retries
        )
        self.sleep(self.delay_seconds)


NO_DELAY = RetryPolicy(delay_seconds=0.0)
