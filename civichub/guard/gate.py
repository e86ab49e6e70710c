"""Single admission entry point combining rate limiting and spam detection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from prometheus_client import Counter

from .models import Decision
from .rate_limiter import RateLimiter
from .spam_guard import SpamGuard

logger = logging.getLogger(__name__)

GUARD_DECISIONS = Counter(
    "civichub_guard_decisions_total",
    "Admission decisions taken by the abuse guard.",
    ["decision", "reason"],
)


class AbuseGate:
    """Admit or reject inbound messages before any external call is made.

    The rate limiter runs first so blacklist entries override everything and
    every message, duplicate or not, counts towards the sender's window. Only
    messages the rate limiter allows reach the identical-message check.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        spam_guard: SpamGuard,
        *,
        clock: Callable[[], float] = time.time,
        prune_interval: float = 300.0,
        idle_seconds: float = 3600.0,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.spam_guard = spam_guard
        self._clock = clock
        self._prune_interval = prune_interval
        self._idle_seconds = idle_seconds
        self._last_prune = clock()

    def admit(
        self,
        tenant_id: str,
        sender: str,
        message_text: str,
        timestamp: float | None = None,
    ) -> Decision:
        now = self._clock() if timestamp is None else timestamp
        if now - self._last_prune >= self._prune_interval:
            self.prune(now)
        decision = self.rate_limiter.check(tenant_id, sender, now)
        if decision.allowed:
            decision = self.spam_guard.check(tenant_id, sender, message_text, now)
        reason = decision.reason.value if decision.reason else "none"
        GUARD_DECISIONS.labels(decision=decision.kind.value, reason=reason).inc()
        if not decision.allowed:
            logger.info("Message rejected: %r", decision.as_error())
        return decision

    def prune(self, now: float | None = None) -> dict[str, int]:
        """Drop per-sender state nobody has touched recently."""

        now = self._clock() if now is None else now
        self._last_prune = now
        removed = {
            "rate_limit": self.rate_limiter.prune(self._idle_seconds, now),
            "spam_guard": self.spam_guard.prune(now),
        }
        if any(removed.values()):
            logger.debug("Pruned idle guard state: %s", removed)
        return removed

    def stats(self, tenant_id: str | None = None) -> dict[str, object]:
        rate = self.rate_limiter.stats(tenant_id)
        spam = self.spam_guard.stats(tenant_id)
        return {
            "total_blocked": rate["total_blocked"],
            "total_blacklisted": rate["total_blacklisted"],
            "banned_senders": spam["banned_senders"],
            "active_senders": rate["active_senders"],
            "top_violators": rate["top_violators"],
            "rate_limit": rate,
            "spam_guard": spam,
        }
