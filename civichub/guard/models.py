"""State and decision types for the abuse guard."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..errors import Blacklisted, PipelineError, RateLimited


class DecisionKind(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"
    BLACKLISTED = "blacklisted"


class RejectReason(str, Enum):
    RATE_EXCEEDED = "rate_exceeded"
    SUPERSEDED = "superseded"
    SPAM_BANNED = "spam_banned"
    BLACKLISTED = "blacklisted"


@dataclass(frozen=True)
class BlacklistEntry:
    tenant_id: str
    sender: str
    reason: str
    added_at: float
    added_by: str = "admin"
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def as_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "sender": self.sender,
            "reason": self.reason,
            "added_by": self.added_by,
            "added_at": _iso(self.added_at),
            "expires_at": _iso(self.expires_at) if self.expires_at is not None else None,
        }


@dataclass(frozen=True)
class Decision:
    """Outcome of :meth:`AbuseGate.admit`."""

    kind: DecisionKind
    reason: RejectReason | None = None
    retry_after_ms: int | None = None
    detail: str | None = None

    @property
    def allowed(self) -> bool:
        return self.kind is DecisionKind.ALLOW

    @classmethod
    def allow(cls) -> "Decision":
        return cls(DecisionKind.ALLOW)

    @classmethod
    def reject(
        cls, reason: RejectReason, *, retry_after_ms: int | None = None, detail: str | None = None
    ) -> "Decision":
        return cls(DecisionKind.REJECT, reason, retry_after_ms, detail)

    @classmethod
    def blacklisted(cls, entry: BlacklistEntry) -> "Decision":
        return cls(DecisionKind.BLACKLISTED, RejectReason.BLACKLISTED, None, entry.reason)

    def as_error(self) -> PipelineError | None:
        """Return the taxonomy error describing a rejection, for logging."""

        if self.kind is DecisionKind.BLACKLISTED:
            return Blacklisted(self.detail or "sender is blacklisted")
        if self.kind is DecisionKind.REJECT and self.reason is not None:
            return RateLimited(self.reason.value)
        return None


@dataclass
class RateLimitState:
    """Per-sender sliding window and violation bookkeeping."""

    timestamps: deque[float] = field(default_factory=deque)
    violations: int = 0
    total_violations: int = 0
    cooldown_until: float = 0.0
    last_seen: float = 0.0


@dataclass
class SpamTrackerEntry:
    """Recent message fingerprints for one sender plus any active ban."""

    history: deque[tuple[str, float]] = field(default_factory=deque)
    banned_until: float = 0.0
    ban_fingerprint: str | None = None
    superseded: int = 0


def _iso(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
