"""Identical-message flood detection and in-flight reply supersession."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..config import SpamGuardSettings
from .models import Decision, RejectReason, SpamTrackerEntry

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

SenderKey = tuple[str, str]


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SpamBan:
    tenant_id: str
    sender: str
    banned_until: float
    superseded: int

    def as_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "sender": self.sender,
            "banned_until": self.banned_until,
            "superseded": self.superseded,
        }


@dataclass
class _InFlight:
    message_id: str
    superseded_by: str | None = None


class SpamGuard:
    """Detect senders repeating the same message within a short window.

    When a fingerprint has already been seen ``max_identical`` times inside
    ``window_ms``, the new copy is rejected as ``superseded`` and the sender is
    banned for ``ban_duration_ms``. While banned, further copies of the same
    text stay ``superseded`` and anything else is ``spam_banned``. Every copy
    is still counted so ban statistics reflect the real flood size.

    The guard also tracks messages currently being processed per sender: a
    newer message marks older in-flight ones as superseded so only the latest
    reply is delivered.
    """

    def __init__(
        self,
        settings: SpamGuardSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or SpamGuardSettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[SenderKey, SpamTrackerEntry] = {}
        self._in_flight: dict[SenderKey, list[_InFlight]] = {}
        self._bans_issued = 0
        self._superseded_total = 0

    @property
    def settings(self) -> SpamGuardSettings:
        return self._settings

    def check(self, tenant_id: str, sender: str, text: str, timestamp: float | None = None) -> Decision:
        now = self._clock() if timestamp is None else timestamp
        digest = fingerprint(text)
        settings = self._settings
        with self._lock:
            entry = self._entries.setdefault((tenant_id, sender), SpamTrackerEntry())
            if entry.banned_until and entry.banned_until <= now:
                entry.banned_until = 0.0
                entry.ban_fingerprint = None
            horizon = now - settings.window_ms / 1000.0
            while entry.history and entry.history[0][1] <= horizon:
                entry.history.popleft()

            if entry.banned_until > now:
                entry.history.append((digest, now))
                retry_after_ms = int((entry.banned_until - now) * 1000)
                if digest == entry.ban_fingerprint:
                    entry.superseded += 1
                    self._superseded_total += 1
                    return Decision.reject(RejectReason.SUPERSEDED, retry_after_ms=retry_after_ms)
                return Decision.reject(RejectReason.SPAM_BANNED, retry_after_ms=retry_after_ms)

            identical = sum(1 for seen, _ in entry.history if seen == digest)
            entry.history.append((digest, now))
            if identical >= settings.max_identical:
                entry.banned_until = now + settings.ban_duration_ms / 1000.0
                entry.ban_fingerprint = digest
                entry.superseded += 1
                self._bans_issued += 1
                self._superseded_total += 1
                logger.warning(
                    "Identical message flood detected (tenant=%s, copies=%d)",
                    tenant_id,
                    identical + 1,
                )
                return Decision.reject(
                    RejectReason.SUPERSEDED,
                    retry_after_ms=settings.ban_duration_ms,
                    detail=f"identical message repeated {identical + 1} times",
                )
            return Decision.allow()

    # ------------------------------------------------------------------
    # Ban administration

    def list_bans(self, tenant_id: str | None = None) -> list[SpamBan]:
        now = self._clock()
        with self._lock:
            return [
                SpamBan(key[0], key[1], entry.banned_until, entry.superseded)
                for key, entry in self._entries.items()
                if entry.banned_until > now and (tenant_id is None or key[0] == tenant_id)
            ]

    def remove_ban(self, tenant_id: str, sender: str) -> bool:
        with self._lock:
            entry = self._entries.get((tenant_id, sender))
            if entry is None or entry.banned_until <= self._clock():
                return False
            entry.banned_until = 0.0
            entry.ban_fingerprint = None
            entry.history.clear()
            return True

    def prune(self, now: float | None = None) -> int:
        """Forget senders with no copies left in the window and no active ban."""

        now = self._clock() if now is None else now
        horizon = now - self._settings.window_ms / 1000.0
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.banned_until <= now and (not entry.history or entry.history[-1][1] <= horizon)
            ]
            for key in stale:
                del self._entries[key]
        return len(stale)

    # ------------------------------------------------------------------
    # In-flight tracking

    def register_processing(self, tenant_id: str, sender: str, message_id: str) -> None:
        with self._lock:
            pending = self._in_flight.setdefault((tenant_id, sender), [])
            for item in pending:
                if item.superseded_by is None:
                    item.superseded_by = message_id
            pending.append(_InFlight(message_id))

    def should_deliver(self, tenant_id: str, sender: str, message_id: str) -> tuple[bool, str]:
        """Return whether the reply for ``message_id`` is still wanted, and why."""

        with self._lock:
            pending = self._in_flight.get((tenant_id, sender), [])
            for item in pending:
                if item.message_id == message_id:
                    if item.superseded_by is not None:
                        return False, f"superseded_by_{item.superseded_by}"
                    return True, "latest_message"
        return True, "not_tracked"

    def complete_processing(self, tenant_id: str, sender: str, message_id: str) -> None:
        key = (tenant_id, sender)
        with self._lock:
            pending = [item for item in self._in_flight.get(key, []) if item.message_id != message_id]
            if pending:
                self._in_flight[key] = pending
            else:
                self._in_flight.pop(key, None)

    # ------------------------------------------------------------------
    # Observability

    def stats(self, tenant_id: str | None = None) -> dict[str, object]:
        now = self._clock()
        with self._lock:
            banned = sum(
                1
                for key, entry in self._entries.items()
                if entry.banned_until > now and (tenant_id is None or key[0] == tenant_id)
            )
            in_flight = sum(
                len(items)
                for key, items in self._in_flight.items()
                if tenant_id is None or key[0] == tenant_id
            )
            return {
                "banned_senders": banned,
                "bans_issued": self._bans_issued,
                "superseded_total": self._superseded_total,
                "in_flight": in_flight,
                "config": self._settings.model_dump(),
            }
