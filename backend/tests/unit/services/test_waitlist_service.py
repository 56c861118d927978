from datetime import time, timedelta

import pytest

from tutorslots.core.clock import ensure_utc
from tutorslots.core.exceptions import (
    AlreadyQueuedError,
    InvalidTransitionError,
    NoAdjacentEntryError,
    NotFoundException,
    ValidationException,
)
from tutorslots.domain.time_range import TimeRange, Weekday

from ...conftest import OWNER, TODAY, make_slot

WEEKLY = TimeRange(start_time=time(16), end_time=time(17), day_of_week=Weekday.WEDNESDAY)


def queue(service, *requesters, desired=WEEKLY):
    return [service.enqueue(OWNER, requester, desired) for requester in requesters]


def test_enqueue_assigns_increasing_priorities(waitlist_service) -> None:
    a, b, c = queue(waitlist_service, "a", "b", "c")
    assert [e.priority for e in (a, b, c)] == [0, 1, 2]
    assert a.status == "waiting"
    assert a.bucket_key == "weekly:Wednesday:16:00-17:00"
    assert [waitlist_service.position(e.id) for e in (a, b, c)] == [1, 2, 3]


def test_enqueue_rejects_overlapping_open_entry(waitlist_service) -> None:
    (first,) = queue(waitlist_service, "a")
    overlapping = TimeRange(start_time=time(16, 30), end_time=time(17, 30), day_of_week=Weekday.WEDNESDAY)

    with pytest.raises(AlreadyQueuedError) as exc:
        waitlist_service.enqueue(OWNER, "a", overlapping)
    assert exc.value.details["existing_entry_id"] == first.id

    # Another owner's line is independent
    assert waitlist_service.enqueue("teacher-2", "a", WEEKLY).priority == 0


def test_promote_and_demote(waitlist_service) -> None:
    a, b, c = queue(waitlist_service, "a", "b", "c")

    line = waitlist_service.promote(c.id)
    assert [e.requester_id for e in line] == ["a", "c", "b"]

    line = waitlist_service.demote(a.id)
    assert [e.requester_id for e in line] == ["c", "a", "b"]
    assert sorted(e.priority for e in line) == [0, 1, 2]


def test_head_and_tail_cannot_move_past_the_ends(waitlist_service) -> None:
    a, b = queue(waitlist_service, "a", "b")
    with pytest.raises(NoAdjacentEntryError) as up:
        waitlist_service.promote(a.id)
    assert up.value.details["direction"] == "up"
    with pytest.raises(NoAdjacentEntryError) as down:
        waitlist_service.demote(b.id)
    assert down.value.details["direction"] == "down"


def test_remove_renumbers_line(waitlist_service) -> None:
    a, b, c = queue(waitlist_service, "a", "b", "c")
    assert waitlist_service.remove(b.id) is None

    assert waitlist_service.position(c.id) == 2
    assert waitlist_service.get_entry(c.id).priority == 1
    with pytest.raises(NotFoundException):
        waitlist_service.get_entry(b.id)


def test_remove_keeps_fulfilled_entries_untouched(waitlist_service) -> None:
    a, b, c = queue(waitlist_service, "a", "b", "c")
    waitlist_service.notify(b.id)
    fulfilled = waitlist_service.fulfill(b.id)
    history = (fulfilled.priority, fulfilled.version)

    waitlist_service.remove(a.id)

    kept = waitlist_service.get_entry(b.id)
    assert (kept.priority, kept.version) == history
    assert waitlist_service.get_entry(c.id).priority == 0
    assert waitlist_service.position(c.id) == 1


def test_removing_notified_entry_passes_offer_on(waitlist_service, notifier) -> None:
    a, b = queue(waitlist_service, "a", "b")
    waitlist_service.notify(a.id)

    successor = waitlist_service.remove(a.id)

    assert successor.id == b.id
    assert successor.status == "notified"
    assert notifier.recipients == ["a", "b"]


def test_notify_and_fulfill(waitlist_service, clock, notifier) -> None:
    (entry,) = queue(waitlist_service, "a")

    offered = waitlist_service.notify(entry.id, ttl=timedelta(hours=2), message="Your turn")
    assert offered.status == "notified"
    assert ensure_utc(offered.expires_at) == clock.now() + timedelta(hours=2)
    assert notifier.sent == [("a", "Your turn", clock.now() + timedelta(hours=2))]

    with pytest.raises(InvalidTransitionError):
        waitlist_service.notify(entry.id)

    clock.advance(hours=1)
    done = waitlist_service.fulfill(entry.id)
    assert done.status == "fulfilled"
    assert waitlist_service.position(entry.id) is None
    with pytest.raises(InvalidTransitionError):
        waitlist_service.remove(entry.id)


def test_fulfill_requires_live_offer(waitlist_service, clock) -> None:
    a, b = queue(waitlist_service, "a", "b")
    with pytest.raises(InvalidTransitionError):
        waitlist_service.fulfill(a.id)

    waitlist_service.notify(b.id, ttl=timedelta(hours=1))
    clock.advance(hours=2)
    with pytest.raises(InvalidTransitionError):
        waitlist_service.fulfill(b.id)


def test_extend(waitlist_service, clock) -> None:
    (entry,) = queue(waitlist_service, "a")
    with pytest.raises(InvalidTransitionError):
        waitlist_service.extend(entry.id, 2)

    offered = waitlist_service.notify(entry.id, ttl=timedelta(hours=1))
    deadline = ensure_utc(offered.expires_at)
    extended = waitlist_service.extend(entry.id, 3)
    assert ensure_utc(extended.expires_at) == deadline + timedelta(hours=3)

    with pytest.raises(ValidationException):
        waitlist_service.extend(entry.id, 0)
    with pytest.raises(ValidationException):
        waitlist_service.extend(entry.id, 169)


def test_expire_sweep_cascades_to_next_waiting(waitlist_service, clock, notifier) -> None:
    a, b, c = queue(waitlist_service, "a", "b", "c")
    waitlist_service.notify(a.id, ttl=timedelta(hours=1))

    clock.advance(minutes=59)
    assert waitlist_service.expire_sweep().expired_ids == []

    clock.advance(minutes=2)
    result = waitlist_service.expire_sweep()

    assert result.expired_ids == [a.id]
    assert result.notified_ids == [b.id]
    assert waitlist_service.get_entry(a.id).status == "expired"
    assert waitlist_service.get_entry(b.id).status == "notified"
    assert waitlist_service.get_entry(c.id).status == "waiting"
    assert notifier.recipients == ["a", "b"]


def test_expire_sweep_is_idempotent(waitlist_service, clock, notifier) -> None:
    (entry,) = queue(waitlist_service, "a")
    waitlist_service.notify(entry.id, ttl=timedelta(hours=1))
    clock.advance(hours=2)

    first = waitlist_service.expire_sweep()
    second = waitlist_service.expire_sweep()

    assert first.to_dict()["expired"] == 1
    assert first.notified_ids == []
    assert second.to_dict() == {"expired": 0, "notified": 0, "expired_ids": [], "notified_ids": []}
    assert notifier.recipients == ["a"]


def test_notify_next_for_slot_prefers_exact_date(waitlist_service, unit_db) -> None:
    wednesday = TODAY + timedelta(days=2)
    queue(waitlist_service, "weekly")
    dated = TimeRange(start_time=time(16), end_time=time(17), date=wednesday)
    (exact,) = queue(waitlist_service, "exact", desired=dated)
    elsewhere = TimeRange(start_time=time(9), end_time=time(10), date=wednesday)
    queue(waitlist_service, "morning", desired=elsewhere)

    slot = make_slot(unit_db, wednesday, "16:30", "17:30")
    notified = waitlist_service.notify_next_for_slot(slot)

    assert notified.id == exact.id
    assert notified.slot_id == slot.id


def test_list_entries(waitlist_service) -> None:
    a, b = queue(waitlist_service, "a", "b")
    waitlist_service.notify(a.id)

    assert [e.id for e in waitlist_service.list_entries(owner_id=OWNER)] == [a.id, b.id]
    assert [e.id for e in waitlist_service.list_entries(owner_id=OWNER, status="waiting")] == [b.id]
    assert [e.id for e in waitlist_service.list_entries(requester_id="a")] == [a.id]
    with pytest.raises(ValidationException):
        waitlist_service.list_entries()


def test_estimate_wait(waitlist_service, clock) -> None:
    (done,) = queue(waitlist_service, "a")
    clock.advance(hours=2)
    waitlist_service.notify(done.id)
    clock.advance(hours=2)
    waitlist_service.fulfill(done.id)

    b, c = queue(waitlist_service, "b", "c")
    estimate = waitlist_service.estimate_wait(c.id)

    assert estimate["position"] == 2
    assert estimate["average_fulfillment_hours"] == 4.0
    assert estimate["estimated_wait_hours"] == 8.0
    assert estimate["sample_size"] == 1
    assert estimate["advisory"] is True
