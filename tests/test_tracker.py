"""
Tests for acknowledgment tracking.
"""

import pytest

from chatwire.exceptions import ConnectionClosedError, TimeoutError, ValidationError
from chatwire.tracker import DeliveryTracker


@pytest.fixture
def tracker(timers):
    return DeliveryTracker(5, timer_factory=timers)


def test_resolve_settles_once(tracker, timers):
    future = tracker.register("m_1", {"type": "message"})

    record = tracker.resolve("m_1", {"message_id": "m_1"})

    assert record.message_id == "m_1"
    assert future.result(timeout=0) == {"message_id": "m_1"}
    assert timers.named("chatwire-ack-m_1")[0].cancelled
    assert tracker.resolve("m_1", {"message_id": "m_1"}) is None
    assert len(tracker) == 0


def test_unknown_ack_is_ignored(tracker):
    assert tracker.resolve("nope", {}) is None


def test_duplicate_identifier_is_rejected(tracker):
    tracker.register("m_1", {})

    with pytest.raises(ValidationError):
        tracker.register("m_1", {})

    assert len(tracker) == 1


def test_deadline_expires_the_record(tracker, timers):
    future = tracker.register("m_1", {})
    timer = timers.named("chatwire-ack-m_1")[0]

    assert timer.interval == 5
    assert timer.daemon
    timer.fire()

    error = future.exception(timeout=0)
    assert isinstance(error, TimeoutError)
    assert error.details["message_id"] == "m_1"
    assert "m_1" not in tracker

    # A late acknowledgment does not resurrect the record
    assert tracker.resolve("m_1", {}) is None


def test_reject_all(tracker, timers):
    futures = [tracker.register(f"m_{i}", {}) for i in range(3)]
    error = ConnectionClosedError("closed")

    rejected = tracker.reject_all(error)

    assert len(rejected) == 3
    assert all(f.exception(timeout=0) is error for f in futures)
    assert all(t.cancelled for t in timers.timers)
    assert len(tracker) == 0


def test_reject_single(tracker):
    first = tracker.register("m_1", {})
    second = tracker.register("m_2", {})

    tracker.reject("m_1", ConnectionClosedError("closed"))

    assert isinstance(first.exception(timeout=0), ConnectionClosedError)
    assert not second.done()
    assert "m_2" in tracker


def test_callers_cannot_cancel(tracker):
    future = tracker.register("m_1", {})

    assert future.cancel() is False
