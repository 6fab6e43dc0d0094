import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from proofly.services.policy_catalog import RateCeilings
from proofly.utils import utcnow

LOGGER = structlog.get_logger(__name__)

MINUTE = 60.0
HOUR = 60 * MINUTE
DAY = 24 * HOUR


@dataclass
class RateDecision:
    allowed: bool
    reason: Optional[str] = None
    window: Optional[str] = None


ALLOW = RateDecision(True)


class SlidingWindowRateLimiter:
    """
    Per-user sliding-window event ledger (photo uploads).

    In-process only: it does not survive restarts and is a UX speed bump,
    not a security boundary. Running several server instances needs a shared
    counter store instead.
    """

    LOCK_STRIPES = 64

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._events: Dict[str, List[float]] = {}
        # fixed pool: users hash onto a stripe, so the lock table never grows
        self._locks = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

    def _lock_for(self, user_id: str) -> threading.Lock:
        return self._locks[hash(user_id) % self.LOCK_STRIPES]

    def _now(self) -> float:
        return self._clock().timestamp()

    def _recent(self, user_id: str, now: float) -> List[float]:
        # lazy prune: drop anything older than the day window, and the user once nothing is left
        kept = [t for t in self._events.get(user_id, []) if t > now - DAY]
        if kept:
            self._events[user_id] = kept
        else:
            self._events.pop(user_id, None)
        return kept

    def _append(self, user_id: str, events: List[float], now: float) -> None:
        events.append(now)
        self._events[user_id] = events

    @staticmethod
    def _evaluate(events: List[float], ceilings: RateCeilings, now: float) -> RateDecision:
        # day -> hour -> minute; first exhausted window wins
        if ceilings.per_day is not None and len(events) >= ceilings.per_day:
            return RateDecision(
                False,
                f"Daily photo limit reached ({ceilings.per_day}). "
                "Please wait until tomorrow or upgrade your plan.",
                "day",
            )
        if ceilings.per_hour is not None:
            hourly = sum(1 for t in events if t > now - HOUR)
            if hourly >= ceilings.per_hour:
                return RateDecision(
                    False,
                    f"Hourly photo limit reached ({ceilings.per_hour}). "
                    "Please wait before taking more photos.",
                    "hour",
                )
        if ceilings.per_minute is not None:
            per_minute = sum(1 for t in events if t > now - MINUTE)
            if per_minute >= ceilings.per_minute:
                return RateDecision(
                    False,
                    "Taking photos too quickly. Please wait a moment before taking another photo.",
                    "minute",
                )
        return ALLOW

    def check(self, user_id: str, ceilings: RateCeilings) -> RateDecision:
        """Read-only look at whether one more event would be allowed."""
        with self._lock_for(user_id):
            now = self._now()
            return self._evaluate(self._recent(user_id, now), ceilings, now)

    def record(self, user_id: str) -> None:
        with self._lock_for(user_id):
            now = self._now()
            self._append(user_id, self._recent(user_id, now), now)

    def attempt(self, user_id: str, ceilings: RateCeilings,
                guard: Optional[Callable[[], RateDecision]] = None) -> RateDecision:
        """
        Check and record as one step. The event is recorded only if every
        window allows it and the optional guard (a further, non-rate check)
        allows it too. A guard that raises records nothing; the exception
        propagates to the caller.
        """
        with self._lock_for(user_id):
            now = self._now()
            events = self._recent(user_id, now)
            decision = self._evaluate(events, ceilings, now)
            if not decision.allowed:
                LOGGER.info("rate_limit_denied", user_id=user_id, window=decision.window)
                return decision
            if guard is not None:
                decision = guard()
                if not decision.allowed:
                    return decision
            self._append(user_id, events, now)
            return ALLOW

    def status(self, user_id: str, ceilings: RateCeilings) -> Dict[str, Dict[str, Optional[int]]]:
        with self._lock_for(user_id):
            now = self._now()
            events = self._recent(user_id, now)
            return {
                "minute": {"used": sum(1 for t in events if t > now - MINUTE), "limit": ceilings.per_minute},
                "hour": {"used": sum(1 for t in events if t > now - HOUR), "limit": ceilings.per_hour},
                "day": {"used": len(events), "limit": ceilings.per_day},
            }

    def daily_count(self, user_id: str) -> int:
        with self._lock_for(user_id):
            return len(self._recent(user_id, self._now()))

    def remaining_daily(self, user_id: str, ceilings: RateCeilings) -> Optional[int]:
        if ceilings.per_day is None:
            return None
        return max(0, ceilings.per_day - self.daily_count(user_id))

    def reset(self, user_id: str) -> None:
        with self._lock_for(user_id):
            self._events.pop(user_id, None)
