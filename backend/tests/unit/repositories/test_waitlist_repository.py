from datetime import datetime, timedelta, timezone

from tutorslots.models.waitlist import WaitlistEntry
from tutorslots.repositories.waitlist_repository import WaitlistRepository

from ...conftest import TODAY, hm

BUCKET = "weekly:Monday:09:00-10:00"


def add_entry(db, requester: str, priority: int, **extra) -> WaitlistEntry:
    values = dict(
        requester_id=requester, owner_id="teacher-1", day_of_week="Monday",
        start_time=hm("09:00"), end_time=hm("10:00"), bucket_key=BUCKET, priority=priority,
    )
    values.update(extra)
    entry = WaitlistEntry(**values)
    db.add(entry)
    db.commit()
    return entry


def test_next_priority(unit_db) -> None:
    repo = WaitlistRepository(unit_db)
    assert repo.next_priority("teacher-1", BUCKET) == 0
    add_entry(unit_db, "a", 0)
    add_entry(unit_db, "b", 4, status="expired")
    assert repo.next_priority("teacher-1", BUCKET) == 5


def test_line_excludes_terminal_entries(unit_db) -> None:
    a = add_entry(unit_db, "a", 0)
    add_entry(unit_db, "b", 1, status="fulfilled")
    c = add_entry(unit_db, "c", 2, status="notified")
    assert [e.id for e in WaitlistRepository(unit_db).get_line("teacher-1", BUCKET)] == [a.id, c.id]


def test_swap_priority(unit_db) -> None:
    a = add_entry(unit_db, "a", 0)
    b = add_entry(unit_db, "b", 1)
    repo = WaitlistRepository(unit_db)

    assert repo.swap_priority(b, a) is True
    unit_db.commit()

    line = repo.get_line("teacher-1", BUCKET)
    assert [e.requester_id for e in line] == ["b", "a"]
    assert [e.priority for e in line] == [0, 1]


def test_swap_priority_detects_stale_rows(unit_db) -> None:
    a = add_entry(unit_db, "a", 0)
    b = add_entry(unit_db, "b", 1)
    repo = WaitlistRepository(unit_db)
    repo.compare_and_swap(a.id, expected_version=1, values={"notes": "touched"})
    unit_db.commit()

    stale = WaitlistEntry(id=a.id, priority=0, version=1)
    assert repo.swap_priority(b, stale) is False
    unit_db.rollback()


def test_renumber_bucket_closes_gaps(unit_db) -> None:
    add_entry(unit_db, "a", 2)
    add_entry(unit_db, "b", 5)
    add_entry(unit_db, "c", 9)
    repo = WaitlistRepository(unit_db)

    assert repo.renumber_bucket("teacher-1", BUCKET) == 3
    unit_db.commit()

    entries = repo.get_entries("teacher-1", BUCKET)
    assert [(e.requester_id, e.priority) for e in entries] == [("a", 0), ("b", 1), ("c", 2)]


def test_renumber_bucket_leaves_history_alone(unit_db) -> None:
    add_entry(unit_db, "a", 1)
    done = add_entry(unit_db, "b", 0, status="fulfilled")
    lapsed = add_entry(unit_db, "c", 2, status="expired")
    waiting = add_entry(unit_db, "d", 4)
    before = [(done.priority, done.version), (lapsed.priority, lapsed.version)]
    repo = WaitlistRepository(unit_db)

    assert repo.renumber_bucket("teacher-1", BUCKET) == 2
    unit_db.commit()

    history = [repo.get_by_id(entry.id, fresh=True) for entry in (done, lapsed)]
    assert [(e.priority, e.version) for e in history] == before
    line = repo.get_line("teacher-1", BUCKET)
    assert [(e.requester_id, e.priority) for e in line] == [("a", 1), ("d", 3)]
    assert waiting.id == line[1].id


def test_expired_offers_are_strictly_past(unit_db) -> None:
    now = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    lapsed = add_entry(unit_db, "a", 0, status="notified", expires_at=now - timedelta(seconds=1))
    add_entry(unit_db, "b", 1, status="notified", expires_at=now)
    assert [e.id for e in WaitlistRepository(unit_db).get_expired_offers(now)] == [lapsed.id]


def test_find_waiting_for_day_prefers_exact_date(unit_db) -> None:
    weekly = add_entry(unit_db, "a", 0)
    exact = add_entry(
        unit_db, "b", 0, date=TODAY, bucket_key="date:2026-03-02:09:00-10:00"
    )
    add_entry(unit_db, "c", 1, status="notified")

    found = WaitlistRepository(unit_db).find_waiting_for_day("teacher-1", TODAY, "Monday")
    assert [e.id for e in found] == [exact.id, weekly.id]
