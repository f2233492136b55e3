"""
YouTube API quota guard for mat-curator.

QuotaState is an explicit, injectable service tracking the remaining budget
for chargeable catalog operations. Every search or detail lookup is charged
with an atomic check-and-decrement before the call is made, so a single run
that issues hundreds of calls stops at the first unit it cannot afford.

The provider resets its daily quota at midnight Pacific time; the state rolls
over automatically when that calendar date changes and can also be reset
explicitly.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, date
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from .error_handling import QuotaExhaustedError

logger = logging.getLogger(__name__)

PROVIDER_TIMEZONE = ZoneInfo("America/Los_Angeles")


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of quota usage."""
    quota_date: date
    search_calls: int
    detail_calls: int
    units_used: int
    daily_limit: int
    exhausted: bool

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.units_used)

    @property
    def percent_used(self) -> float:
        return (self.units_used / self.daily_limit * 100) if self.daily_limit else 100.0


class QuotaState:
    """
    Process-wide remaining-budget counter for chargeable catalog operations.

    Provides an atomic ``consume`` that either charges the operation or raises
    QuotaExhaustedError without charging anything.
    """

    # API quota costs (per YouTube API documentation)
    QUOTA_COSTS: Dict[str, int] = {
        'search': 100,
        'videos': 1,
    }

    DEFAULT_QUOTA_LIMIT = 10000
    WARNING_RATIO = 0.8

    def __init__(self, daily_limit: int = DEFAULT_QUOTA_LIMIT,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize quota state.

        Args:
            daily_limit: Daily quota in units
            clock: Returns the current aware datetime (injectable for tests)
        """
        if daily_limit <= 0:
            raise ValueError("Daily quota limit must be positive")
        self.daily_limit = daily_limit
        self._clock = clock or (lambda: datetime.now(PROVIDER_TIMEZONE))
        self._lock = threading.Lock()
        self._quota_date = self._provider_date()
        self._units_used = 0
        self._search_calls = 0
        self._detail_calls = 0
        self._exhausted = False
        self._warned = False

    def _provider_date(self) -> date:
        return self._clock().astimezone(PROVIDER_TIMEZONE).date()

    def _rollover_if_needed(self) -> None:
        """Reset counters when the provider's calendar day has changed. Caller holds the lock."""
        today = self._provider_date()
        if today != self._quota_date:
            logger.info(f"New quota day detected ({today}) - resetting quota tracker")
            self._reset_locked(today)

    def _reset_locked(self, quota_date: date) -> None:
        self._quota_date = quota_date
        self._units_used = 0
        self._search_calls = 0
        self._detail_calls = 0
        self._exhausted = False
        self._warned = False

    def cost_of(self, operation: str) -> int:
        """Quota cost of one call of ``operation``."""
        return self.QUOTA_COSTS.get(operation, 1)

    def consume(self, operation: str) -> int:
        """
        Charge one call of ``operation`` against the budget.

        Args:
            operation: API operation name ('search', 'videos', ...)

        Returns:
            Remaining units after the charge

        Raises:
            QuotaExhaustedError: If the state is exhausted or the cost would exceed the limit
        """
        cost = self.cost_of(operation)
        with self._lock:
            self._rollover_if_needed()
            if self._exhausted:
                raise QuotaExhaustedError("YouTube API quota already exhausted", operation=operation)
            if self._units_used + cost > self.daily_limit:
                self._exhausted = True
                logger.warning(
                    f"Quota limit would be exceeded. Used: {self._units_used}, "
                    f"Limit: {self.daily_limit}, Operation cost: {cost}"
                )
                raise QuotaExhaustedError(
                    f"Quota limit would be exceeded by {operation} (cost {cost}, "
                    f"remaining {self.daily_limit - self._units_used})",
                    operation=operation,
                )

            self._units_used += cost
            if operation == 'search':
                self._search_calls += 1
            elif operation == 'videos':
                self._detail_calls += 1

            remaining = self.daily_limit - self._units_used
            if not self._warned and self._units_used >= self.daily_limit * self.WARNING_RATIO:
                self._warned = True
                logger.warning(f"{self._units_used / self.daily_limit * 100:.1f}% of daily quota used")

        logger.debug(f"Quota updated: +{cost}, total: {self.daily_limit - remaining}/{self.daily_limit}")
        return remaining

    def can_afford(self, operation: str) -> bool:
        """Check, without charging, whether one call of ``operation`` fits the budget."""
        with self._lock:
            self._rollover_if_needed()
            return not self._exhausted and self._units_used + self.cost_of(operation) <= self.daily_limit

    def is_exhausted(self) -> bool:
        """True once the budget has been exhausted (locally or as reported by the provider)."""
        with self._lock:
            self._rollover_if_needed()
            return self._exhausted

    def mark_exhausted(self, reason: str = "provider reported quota exceeded") -> None:
        """Mark the quota as exhausted, e.g. when the API returns a quota error."""
        with self._lock:
            self._exhausted = True
            logger.error(
                f"YouTube API quota exhausted ({reason}). Estimated usage: "
                f"{self._units_used}/{self.daily_limit} units, searches: {self._search_calls}, "
                f"detail lookups: {self._detail_calls}"
            )

    def reset(self, reason: str = "manual_reset") -> None:
        """Reset the counters, e.g. when the provider's quota window restarts."""
        with self._lock:
            previous = self._units_used
            self._reset_locked(self._provider_date())
        logger.info(f"Quota reset ({reason}); previous usage {previous}/{self.daily_limit} units")

    def snapshot(self) -> QuotaSnapshot:
        """
        Get current quota usage.

        Returns:
            QuotaSnapshot with counters and the exhausted flag
        """
        with self._lock:
            self._rollover_if_needed()
            return QuotaSnapshot(
                quota_date=self._quota_date,
                search_calls=self._search_calls,
                detail_calls=self._detail_calls,
                units_used=self._units_used,
                daily_limit=self.daily_limit,
                exhausted=self._exhausted,
            )
