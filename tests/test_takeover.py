"""Tests for takeover state transitions and the human handoff queue."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from civichub.conversations import (
    ConversationMode,
    HandoffItem,
    InMemoryHandoffQueue,
    TakeoverOutcome,
    TakeoverTracker,
)


def test_start_and_end_takeover() -> None:
    tracker = TakeoverTracker()

    assert tracker.start_takeover("desa-1", "B", "op1", "keluhan sensitif") is TakeoverOutcome.OK
    status = tracker.get_status("desa-1", "B")
    assert status.in_takeover
    assert status.operator_id == "op1"
    assert status.since is not None

    assert tracker.end_takeover("desa-1", "B") is TakeoverOutcome.OK
    assert tracker.get_status("desa-1", "B").mode is ConversationMode.AI_ACTIVE
    assert tracker.end_takeover("desa-1", "B") is TakeoverOutcome.NOT_IN_TAKEOVER


def test_concurrent_start_takeover_has_one_winner() -> None:
    tracker = TakeoverTracker()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(
            pool.map(lambda i: tracker.start_takeover("desa-1", "B", f"op{i}"), range(16))
        )

    assert outcomes.count(TakeoverOutcome.OK) == 1
    assert outcomes.count(TakeoverOutcome.ALREADY_IN_TAKEOVER) == 15
    winner = f"op{outcomes.index(TakeoverOutcome.OK)}"
    assert tracker.get_status("desa-1", "B").operator_id == winner


def test_second_start_takeover_is_rejected() -> None:
    tracker = TakeoverTracker()
    tracker.start_takeover("desa-1", "B", "op1")

    assert tracker.start_takeover("desa-1", "B", "op2") is TakeoverOutcome.ALREADY_IN_TAKEOVER
    assert tracker.get_status("desa-1", "B").operator_id == "op1"


def test_closed_conversation_reopens_on_inbound() -> None:
    tracker = TakeoverTracker()
    tracker.close("desa-1", "B")
    assert tracker.get_status("desa-1", "B").mode is ConversationMode.CLOSED

    status = tracker.register_inbound("desa-1", "B")

    assert status.mode is ConversationMode.AI_ACTIVE


def test_register_inbound_keeps_takeover_and_bumps_version() -> None:
    tracker = TakeoverTracker()
    tracker.start_takeover("desa-1", "B", "op1")
    version = tracker.get_conversation("desa-1", "B").version

    status = tracker.register_inbound("desa-1", "B")

    assert status.in_takeover
    assert tracker.get_conversation("desa-1", "B").version == version + 1


def test_takeovers_are_tenant_scoped() -> None:
    tracker = TakeoverTracker()
    tracker.start_takeover("desa-1", "B", "op1")
    tracker.register_inbound("desa-2", "B")

    assert [c.sender for c in tracker.list_takeovers("desa-1")] == ["B"]
    assert tracker.list_takeovers("desa-2") == []
    assert not tracker.get_status("desa-2", "B").in_takeover


def test_handoff_queue_drains_per_sender() -> None:
    queue = InMemoryHandoffQueue(max_items_per_tenant=2)
    for sender, text in (("A", "satu"), ("B", "dua"), ("A", "tiga")):
        queue.enqueue(
            HandoffItem(tenant_id="desa-1", sender=sender, channel="whatsapp", text=text, trace_id="t")
        )

    # oldest item dropped once the tenant queue is full
    assert [item.text for item in queue.pending("desa-1")] == ["dua", "tiga"]
    assert [item.text for item in queue.drain("desa-1", "A")] == ["tiga"]
    assert [item.text for item in queue.pending("desa-1")] == ["dua"]
    assert queue.pending("desa-2") == []
