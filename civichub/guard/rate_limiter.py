"""Sliding-window rate limiting with violations and a tenant blacklist.

Every sender gets a window of accepted message timestamps. A message that
would push the count past ``max_per_window``, or that arrives while the sender
is cooling down, is a violation: the cooldown is extended (never shortened)
and, after ``auto_blacklist_violations`` consecutive violations, the sender is
blacklisted by the system. Blacklist entries win over every other rule and
only disappear through an admin action or their own expiry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from ..config import RateLimitSettings
from .models import BlacklistEntry, Decision, RateLimitState, RejectReason

logger = logging.getLogger(__name__)

AUTO_BLACKLIST_REASON = "Terlalu banyak pelanggaran rate limit"

SenderKey = tuple[str, str]


class RateLimiter:
    """Per-sender rate limiting state kept in memory."""

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or RateLimitSettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[SenderKey, RateLimitState] = {}
        self._blacklist: dict[SenderKey, BlacklistEntry] = {}
        self._total_blocked = 0

    @property
    def settings(self) -> RateLimitSettings:
        return self._settings

    def reconfigure(self, **changes: object) -> RateLimitSettings:
        merged = self._settings.model_dump()
        merged.update(changes)
        updated = RateLimitSettings.model_validate(merged)
        with self._lock:
            self._settings = updated
        logger.info("Rate limit settings updated: %s", sorted(changes))
        return updated

    # ------------------------------------------------------------------
    # Admission

    def check(self, tenant_id: str, sender: str, timestamp: float | None = None) -> Decision:
        now = self._clock() if timestamp is None else timestamp
        key = (tenant_id, sender)
        with self._lock:
            entry = self._active_blacklist_entry(key, now)
            if entry is not None:
                self._total_blocked += 1
                return Decision.blacklisted(entry)

            settings = self._settings
            state = self._states.setdefault(key, RateLimitState())
            state.last_seen = now
            horizon = now - settings.window_ms / 1000.0
            while state.timestamps and state.timestamps[0] <= horizon:
                state.timestamps.popleft()

            if state.cooldown_until > now or len(state.timestamps) >= settings.max_per_window:
                return self._violation(key, state, now)

            state.timestamps.append(now)
            state.violations = 0
            return Decision.allow()

    def _violation(self, key: SenderKey, state: RateLimitState, now: float) -> Decision:
        settings = self._settings
        state.violations += 1
        state.total_violations += 1
        self._total_blocked += 1
        state.cooldown_until = max(state.cooldown_until, now + settings.cooldown_ms / 1000.0)
        if state.violations >= settings.auto_blacklist_violations:
            tenant_id, sender = key
            self._blacklist[key] = BlacklistEntry(
                tenant_id=tenant_id,
                sender=sender,
                reason=AUTO_BLACKLIST_REASON,
                added_at=now,
                added_by="system",
            )
            logger.warning(
                "Sender auto-blacklisted after %d violations (tenant=%s)",
                state.violations,
                tenant_id,
            )
        retry_after_ms = max(int((state.cooldown_until - now) * 1000), 0)
        return Decision.reject(RejectReason.RATE_EXCEEDED, retry_after_ms=retry_after_ms)

    def _active_blacklist_entry(self, key: SenderKey, now: float) -> BlacklistEntry | None:
        entry = self._blacklist.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._blacklist[key]
            logger.info("Blacklist entry expired (tenant=%s)", key[0])
            return None
        return entry

    def cooldown_until(self, tenant_id: str, sender: str) -> float | None:
        """Return the cooldown expiry timestamp, or ``None`` if not cooling down."""

        with self._lock:
            state = self._states.get((tenant_id, sender))
            if state is None or state.cooldown_until <= self._clock():
                return None
            return state.cooldown_until

    def violations(self, tenant_id: str, sender: str) -> int:
        with self._lock:
            state = self._states.get((tenant_id, sender))
            return state.violations if state else 0

    # ------------------------------------------------------------------
    # Administration

    def add_to_blacklist(
        self,
        tenant_id: str,
        sender: str,
        reason: str,
        *,
        added_by: str = "admin",
        expires_in_days: float | None = None,
    ) -> BlacklistEntry:
        now = self._clock()
        expires_at = now + expires_in_days * 86400 if expires_in_days else None
        entry = BlacklistEntry(
            tenant_id=tenant_id,
            sender=sender,
            reason=reason,
            added_at=now,
            added_by=added_by,
            expires_at=expires_at,
        )
        with self._lock:
            self._blacklist[(tenant_id, sender)] = entry
        logger.info("Sender blacklisted by %s (tenant=%s)", added_by, tenant_id)
        return entry

    def remove_from_blacklist(self, tenant_id: str, sender: str) -> bool:
        with self._lock:
            removed = self._blacklist.pop((tenant_id, sender), None) is not None
            state = self._states.get((tenant_id, sender))
            if removed and state is not None:
                state.violations = 0
        return removed

    def is_blacklisted(self, tenant_id: str, sender: str) -> bool:
        with self._lock:
            return self._active_blacklist_entry((tenant_id, sender), self._clock()) is not None

    def list_blacklist(self, tenant_id: str | None = None) -> list[BlacklistEntry]:
        now = self._clock()
        with self._lock:
            for key in [k for k, e in self._blacklist.items() if e.is_expired(now)]:
                del self._blacklist[key]
            entries = [
                entry
                for entry in self._blacklist.values()
                if tenant_id is None or entry.tenant_id == tenant_id
            ]
        return sorted(entries, key=lambda e: e.added_at, reverse=True)

    def reset_violations(self, tenant_id: str, sender: str) -> bool:
        with self._lock:
            state = self._states.get((tenant_id, sender))
            if state is None:
                return False
            state.violations = 0
            state.cooldown_until = 0.0
            return True

    # ------------------------------------------------------------------
    # Observability

    def stats(self, tenant_id: str | None = None) -> dict[str, object]:
        now = self._clock()
        with self._lock:
            horizon = now - self._settings.window_ms / 1000.0
            items = [
                (key, state)
                for key, state in self._states.items()
                if tenant_id is None or key[0] == tenant_id
            ]
            active = sum(
                1 for _, state in items if state.timestamps and state.timestamps[-1] > horizon
            )
            cooling = sum(1 for _, state in items if state.cooldown_until > now)
            top = sorted(
                (item for item in items if item[1].total_violations),
                key=lambda item: item[1].total_violations,
                reverse=True,
            )[:10]
            blacklisted = sum(
                1
                for entry in self._blacklist.values()
                if (tenant_id is None or entry.tenant_id == tenant_id) and not entry.is_expired(now)
            )
            return {
                "total_blocked": self._total_blocked,
                "total_blacklisted": blacklisted,
                "active_senders": active,
                "cooling_down": cooling,
                "top_violators": [
                    {"tenant_id": key[0], "sender": key[1], "violations": state.total_violations}
                    for key, state in top
                ],
            }

    def prune(self, idle_seconds: float = 3600.0, now: float | None = None) -> int:
        """Drop state for senders idle longer than ``idle_seconds``."""

        now = self._clock() if now is None else now
        with self._lock:
            stale = [
                key
                for key, state in self._states.items()
                if state.last_seen < now - idle_seconds and state.cooldown_until <= now
            ]
            for key in stale:
                del self._states[key]
        return len(stale)
