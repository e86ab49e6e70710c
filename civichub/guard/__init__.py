"""Per-sender abuse control: rate limiting, blacklist and spam detection."""

from .content import detect_spam_content
from .gate import AbuseGate
from .models import BlacklistEntry, Decision, DecisionKind, RejectReason
from .rate_limiter import RateLimiter
from .spam_guard import SpamBan, SpamGuard, fingerprint, normalize_text

__all__ = [
    "AbuseGate",
    "BlacklistEntry",
    "Decision",
    "DecisionKind",
    "RateLimiter",
    "RejectReason",
    "SpamBan",
    "SpamGuard",
    "detect_spam_content",
    "fingerprint",
    "normalize_text",
]
