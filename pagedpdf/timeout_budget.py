from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from pagedpdf.exceptions import TimeoutBudgetExhausted

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TimeoutBudget:
    """
    Wall-clock deadline shared by all phases of a build.

    The budget starts at the configured timeout when the build starts and is
    reduced by the time elapsed since then each time it is consumed.
    """

    def __init__(self, timeout_ms: int, clock: Callable[[], float] | None = None) -> None:
        self.timeout_ms = timeout_ms
        self.remaining_ms: float = timeout_ms
        self._clock = clock or time.monotonic
        self._start = self._clock()

    def elapsed_ms(self) -> float:
        return (self._clock() - self._start) * 1000

    def consume(self) -> float:
        """Recompute the remaining budget from the elapsed time and return it."""
        self.remaining_ms = self.timeout_ms - self.elapsed_ms()
        return self.remaining_ms

    def ensure_remaining(self) -> float:
        """
        Consume the budget and fail if nothing is left.

        Returns:
            Remaining milliseconds, strictly positive.

        Raises:
            TimeoutBudgetExhausted: If the remaining budget is zero or negative.
        """
        remaining = self.consume()
        if remaining <= 0:
            logger.error("Timeout budget of %d ms exhausted (elapsed: %.0f ms)", self.timeout_ms, self.elapsed_ms())
            raise TimeoutBudgetExhausted()
        logger.debug("Remaining timeout: %.0f ms", remaining)
        return remaining
