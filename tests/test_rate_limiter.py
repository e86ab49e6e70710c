"""Tests for the sliding-window rate limiter and the tenant blacklist."""

from __future__ import annotations

import pytest

from civichub.config import RateLimitSettings
from civichub.guard.models import DecisionKind, RejectReason
from civichub.guard.rate_limiter import AUTO_BLACKLIST_REASON, RateLimiter

from conftest import FakeClock


@pytest.fixture()
def limiter(clock: FakeClock) -> RateLimiter:
    settings = RateLimitSettings(
        max_per_window=3, window_ms=10_000, cooldown_ms=30_000, auto_blacklist_violations=10
    )
    return RateLimiter(settings, clock=clock)


def test_messages_within_window_are_allowed(limiter: RateLimiter) -> None:
    decisions = [limiter.check("desa-1", "628111") for _ in range(3)]

    assert all(decision.allowed for decision in decisions)


def test_exceeding_window_is_a_violation_with_retry_hint(limiter: RateLimiter) -> None:
    for _ in range(3):
        limiter.check("desa-1", "628111")

    decision = limiter.check("desa-1", "628111")

    assert decision.kind is DecisionKind.REJECT
    assert decision.reason is RejectReason.RATE_EXCEEDED
    assert decision.retry_after_ms == 30_000
    assert limiter.violations("desa-1", "628111") == 1


def test_window_slides_after_cooldown(limiter: RateLimiter, clock: FakeClock) -> None:
    for _ in range(4):
        limiter.check("desa-1", "628111")

    clock.advance(31)

    assert limiter.check("desa-1", "628111").allowed
    assert limiter.violations("desa-1", "628111") == 0


def test_cooldown_expiry_never_decreases(clock: FakeClock) -> None:
    limiter = RateLimiter(
        RateLimitSettings(max_per_window=1, window_ms=10_000, cooldown_ms=30_000),
        clock=clock,
    )
    limiter.check("desa-1", "628111")
    observed: list[float] = []
    for step in range(6):
        limiter.check("desa-1", "628111")
        observed.append(limiter.cooldown_until("desa-1", "628111"))
        if step == 2:
            # a shorter cooldown must not pull the active expiry back
            limiter.reconfigure(cooldown_ms=1_000)
        clock.advance(0.5)

    assert all(later >= earlier for earlier, later in zip(observed, observed[1:]))


def test_rejected_messages_do_not_fill_the_window(limiter: RateLimiter, clock: FakeClock) -> None:
    for _ in range(3):
        limiter.check("desa-1", "628111")
    for _ in range(5):
        limiter.check("desa-1", "628111")

    clock.advance(31)

    assert all(limiter.check("desa-1", "628111").allowed for _ in range(3))


def test_auto_blacklist_after_consecutive_violations(clock: FakeClock) -> None:
    limiter = RateLimiter(
        RateLimitSettings(max_per_window=1, cooldown_ms=1_000, auto_blacklist_violations=10),
        clock=clock,
    )
    assert limiter.check("desa-1", "C").allowed

    for _ in range(10):
        decision = limiter.check("desa-1", "C")
        assert decision.reason is RejectReason.RATE_EXCEEDED

    decision = limiter.check("desa-1", "C")

    assert decision.kind is DecisionKind.BLACKLISTED
    entry = limiter.list_blacklist("desa-1")[0]
    assert entry.added_by == "system"
    assert entry.reason == AUTO_BLACKLIST_REASON


def test_blacklist_is_tenant_scoped(limiter: RateLimiter) -> None:
    limiter.add_to_blacklist("desa-1", "628111", "abuse")

    assert limiter.check("desa-1", "628111").kind is DecisionKind.BLACKLISTED
    assert limiter.check("desa-2", "628111").allowed


def test_blacklist_expiry_and_removal(limiter: RateLimiter, clock: FakeClock) -> None:
    limiter.add_to_blacklist("desa-1", "628111", "abuse", expires_in_days=1)
    limiter.add_to_blacklist("desa-1", "628222", "abuse")

    clock.advance(86_401)

    assert not limiter.is_blacklisted("desa-1", "628111")
    assert limiter.is_blacklisted("desa-1", "628222")
    assert limiter.remove_from_blacklist("desa-1", "628222")
    assert not limiter.remove_from_blacklist("desa-1", "628222")
    assert limiter.list_blacklist("desa-1") == []


def test_reset_violations_clears_cooldown(limiter: RateLimiter) -> None:
    for _ in range(4):
        limiter.check("desa-1", "628111")

    assert limiter.reset_violations("desa-1", "628111")
    assert limiter.cooldown_until("desa-1", "628111") is None
    assert not limiter.reset_violations("desa-1", "unknown")


def test_stats_report_top_violators(limiter: RateLimiter) -> None:
    for _ in range(5):
        limiter.check("desa-1", "628111")
    limiter.check("desa-1", "628222")

    stats = limiter.stats("desa-1")

    assert stats["total_blocked"] == 2
    assert stats["active_senders"] == 2
    assert stats["top_violators"] == [
        {"tenant_id": "desa-1", "sender": "628111", "violations": 2}
    ]


def test_reconfigure_validates_values(limiter: RateLimiter) -> None:
    with pytest.raises(ValueError):
        limiter.reconfigure(max_per_window=0)

    assert limiter.reconfigure(max_per_window=20).max_per_window == 20
