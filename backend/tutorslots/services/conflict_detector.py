# backend/tutorslots/services/conflict_detector.py
"""
Conflict Detector Service for the scheduling core.

Screens proposed time ranges against an owner's existing schedule:
- recurring templates (weekly patterns)
- concrete schedule slots
- blocked periods

Finding conflicts is not an error. Every call returns a ConflictReport,
possibly empty; only malformed input raises (InvalidRangeError).

Each call reads the owner's schedule once and answers every proposed range
from that snapshot, indexed by date and weekday.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
import logging
from typing import Any, Callable, DefaultDict, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import InvalidRangeError
from ..domain.time_range import TimeRange, Weekday, conflict_severity, overlaps
from ..models.blocked_period import BlockedPeriod
from ..models.recurring_template import RecurringTemplate
from ..models.schedule_slot import ScheduleSlot
from ..repositories.factory import RepositoryFactory
from ..utils.time_helpers import time_to_string
from .base import BaseService

logger = logging.getLogger(__name__)

DateRange = Tuple[date, date]


@dataclass
class ConflictReport:
    """Conflicts for one proposed range, partitioned by conflict class."""

    proposed_range: TimeRange
    time_slot_conflicts: List[RecurringTemplate] = field(default_factory=list)
    schedule_slot_conflicts: List[ScheduleSlot] = field(default_factory=list)
    blocked_slot_conflicts: List[BlockedPeriod] = field(default_factory=list)

    @property
    def total_conflicts(self) -> int:
        return (
            len(self.time_slot_conflicts)
            + len(self.schedule_slot_conflicts)
            + len(self.blocked_slot_conflicts)
        )

    @property
    def has_conflicts(self) -> bool:
        return self.total_conflicts > 0

    @property
    def severity(self) -> Optional[str]:
        return conflict_severity(self.total_conflicts) if self.has_conflicts else None

    @property
    def conflicting_slot_ids(self) -> List[str]:
        return [slot.id for slot in self.schedule_slot_conflicts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposed_range": self.proposed_range.to_dict(),
            "has_conflicts": self.has_conflicts,
            "total_conflicts": self.total_conflicts,
            "severity": self.severity,
            "time_slot_conflicts": [_template_dict(t) for t in self.time_slot_conflicts],
            "schedule_slot_conflicts": [_slot_dict(s) for s in self.schedule_slot_conflicts],
            "blocked_slot_conflicts": [_blocked_dict(b) for b in self.blocked_slot_conflicts],
        }


def _template_dict(template: RecurringTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "day_of_week": template.day_of_week,
        "start_time": time_to_string(template.start_time),
        "end_time": time_to_string(template.end_time),
        "subject": template.subject,
    }


def _slot_dict(slot: ScheduleSlot) -> Dict[str, Any]:
    return {
        "id": slot.id,
        "date": slot.date.isoformat(),
        "day_of_week": Weekday.from_date(slot.date).value,
        "start_time": time_to_string(slot.start_time),
        "end_time": time_to_string(slot.end_time),
        "status": slot.status,
        "subject": slot.subject,
    }


def _blocked_dict(blocked: BlockedPeriod) -> Dict[str, Any]:
    return {
        "id": blocked.id,
        "date": blocked.date.isoformat() if blocked.date else None,
        "day_of_week": blocked.day_of_week,
        "start_time": time_to_string(blocked.start_time),
        "end_time": time_to_string(blocked.end_time),
        "reason": blocked.reason,
    }


class ScheduleSnapshot:
    """
    One consistent read of an owner's schedule, indexed for lookups.

    Dated proposals hit the per-date buckets, weekly proposals the
    per-weekday buckets, so each check only scans same-day items.
    """

    def __init__(
        self,
        templates: Iterable[RecurringTemplate],
        slots: Iterable[ScheduleSlot],
        blocked: Iterable[BlockedPeriod],
        window: DateRange,
    ):
        self.window = window
        self.templates_by_day: DefaultDict[Weekday, List[RecurringTemplate]] = defaultdict(list)
        self.slots_by_date: DefaultDict[date, List[ScheduleSlot]] = defaultdict(list)
        self.slots_by_day: DefaultDict[Weekday, List[ScheduleSlot]] = defaultdict(list)
        self.blocked_by_date: DefaultDict[date, List[BlockedPeriod]] = defaultdict(list)
        self.blocked_dated_by_day: DefaultDict[Weekday, List[BlockedPeriod]] = defaultdict(list)
        self.blocked_weekly_by_day: DefaultDict[Weekday, List[BlockedPeriod]] = defaultdict(list)

        for template in templates:
            self.templates_by_day[Weekday(template.day_of_week)].append(template)
        for slot in slots:
            self.add_slot(slot)
        for period in blocked:
            if period.date is not None:
                self.blocked_by_date[period.date].append(period)
                self.blocked_dated_by_day[Weekday.from_date(period.date)].append(period)
            else:
                self.blocked_weekly_by_day[Weekday(period.day_of_week)].append(period)

    def add_slot(self, slot: ScheduleSlot) -> None:
        self.slots_by_date[slot.date].append(slot)
        self.slots_by_day[Weekday.from_date(slot.date)].append(slot)

    def check(
        self,
        proposed: TimeRange,
        *,
        check_templates: bool = True,
        check_slots: bool = True,
        check_blocked: bool = True,
    ) -> ConflictReport:
        report = ConflictReport(proposed_range=proposed)
        day = proposed.weekday

        if check_templates:
            for template in self.templates_by_day.get(day, []):
                if proposed.date is not None and template.recurrence_end_date is not None:
                    if proposed.date > template.recurrence_end_date:
                        continue
                if overlaps(proposed, template.time_range):
                    report.time_slot_conflicts.append(template)

        if check_slots:
            if proposed.date is not None:
                candidates = self.slots_by_date.get(proposed.date, [])
            else:
                candidates = self.slots_by_day.get(day, [])
            report.schedule_slot_conflicts.extend(
                slot for slot in candidates if overlaps(proposed, slot.time_range)
            )

        if check_blocked:
            if proposed.date is not None:
                periods = self.blocked_by_date.get(proposed.date, [])
            else:
                periods = self.blocked_dated_by_day.get(day, [])
            periods = list(periods) + self.blocked_weekly_by_day.get(day, [])
            report.blocked_slot_conflicts.extend(
                period for period in periods if overlaps(proposed, period.time_range)
            )

        return report


class ConflictDetector(BaseService):
    """
    Service for screening proposed ranges against an owner's schedule.

    Templates and dated slots are compared by resolving the template's
    weekday against the slot's date. Weekly proposals are compared against
    dated slots inside ``date_range`` (default: today plus the configured
    lookahead).
    """

    def __init__(self, db: Session, clock: Clock = system_clock):
        super().__init__(db, clock)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.template_repository = RepositoryFactory.create_template_repository(db)
        self.blocked_repository = RepositoryFactory.create_blocked_period_repository(db)

    def default_window(self) -> DateRange:
        today = self.clock.now().date()
        return today, today + timedelta(days=settings.conflict_lookahead_days - 1)

    def window_for(self, ranges: Sequence[TimeRange], date_range: Optional[DateRange]) -> DateRange:
        if date_range is not None:
            start, end = date_range
            if end < start:
                raise InvalidRangeError(
                    "date_range end must not precede its start",
                    details={"start_date": start.isoformat(), "end_date": end.isoformat()},
                )
        else:
            start, end = self.default_window()
        dated = [r.date for r in ranges if r.date is not None]
        if dated and date_range is None and len(dated) == len(ranges):
            return min(dated), max(dated)
        if dated:
            start, end = min([start] + dated), max([end] + dated)
        return start, end

    def load_snapshot(
        self,
        owner_id: str,
        window: DateRange,
        *,
        exclude_slot_ids: Optional[Iterable[str]] = None,
        exclude_template_ids: Optional[Iterable[str]] = None,
    ) -> ScheduleSnapshot:
        start, end = window
        return ScheduleSnapshot(
            templates=self.template_repository.get_templates(
                owner_id, exclude_ids=list(exclude_template_ids or [])
            ),
            slots=self.slot_repository.get_slots(owner_id, start, end, exclude_ids=exclude_slot_ids),
            blocked=self.blocked_repository.get_blocked_periods(owner_id, start, end),
            window=window,
        )

    @BaseService.measure_operation("detect_conflicts")
    def detect_conflicts(
        self,
        owner_id: str,
        proposed: TimeRange,
        *,
        exclude_slot_ids: Optional[Iterable[str]] = None,
        exclude_template_ids: Optional[Iterable[str]] = None,
        check_templates: bool = True,
        check_slots: bool = True,
        check_blocked: bool = True,
        date_range: Optional[DateRange] = None,
    ) -> ConflictReport:
        """
        Screen one proposed range.

        Args:
            owner_id: Teacher whose schedule is checked
            proposed: Weekly or dated range
            exclude_slot_ids: Slots to ignore (e.g. the slot being edited)
            exclude_template_ids: Templates to ignore (e.g. the series being edited)
            check_templates / check_slots / check_blocked: Collections to consult
            date_range: Window of dated slots a weekly proposal is compared with

        Returns:
            ConflictReport, empty when the range is free
        """
        return self.detect_conflicts_batch(
            owner_id,
            [proposed],
            exclude_slot_ids=exclude_slot_ids,
            exclude_template_ids=exclude_template_ids,
            check_templates=check_templates,
            check_slots=check_slots,
            check_blocked=check_blocked,
            date_range=date_range,
        )[0]

    def detect_conflicts_batch(
        self,
        owner_id: str,
        proposed: Sequence[TimeRange],
        *,
        exclude_slot_ids: Optional[Iterable[str]] = None,
        exclude_template_ids: Optional[Iterable[str]] = None,
        check_templates: bool = True,
        check_slots: bool = True,
        check_blocked: bool = True,
        date_range: Optional[DateRange] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> List[ConflictReport]:
        """
        Screen several ranges against a single snapshot.

        Reports come back in input order. When ``should_cancel`` turns true
        the reports computed so far are returned.
        """
        if not proposed:
            return []
        for item in proposed:
            if not isinstance(item, TimeRange):
                raise InvalidRangeError("Proposed ranges must be TimeRange values")

        snapshot = self.load_snapshot(
            owner_id,
            self.window_for(proposed, date_range),
            exclude_slot_ids=exclude_slot_ids,
            exclude_template_ids=exclude_template_ids,
        )
        reports: List[ConflictReport] = []
        for item in proposed:
            if should_cancel is not None and should_cancel():
                self.logger.info(
                    "conflict_detection_cancelled",
                    extra={"owner_id": owner_id, "checked": len(reports), "requested": len(proposed)},
                )
                break
            reports.append(
                snapshot.check(
                    item,
                    check_templates=check_templates,
                    check_slots=check_slots,
                    check_blocked=check_blocked,
                )
            )

        flagged = sum(1 for r in reports if r.has_conflicts)
        if flagged:
            self.logger.info(
                "conflicts_detected",
                extra={"owner_id": owner_id, "ranges": len(proposed), "conflicting_ranges": flagged},
            )
        return reports
