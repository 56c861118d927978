# backend/tutorslots/services/recurring_expander.py
"""
Recurring Expander Service for the scheduling core.

Turns weekly patterns into dated slots:
- Preview: counts, occurrence dates and every conflict, no writes
- Commit: refuses while conflicts remain unless overridden, then writes
  the templates and their non-conflicting occurrences in one transaction
- Series maintenance: update a template's times and delete a series

Conflicts are checked at two levels. Each pattern is compared once with
the owner's other templates; each dated occurrence is compared with
concrete slots, blocked periods and the other occurrences in the request.
"""

from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import (
    InvalidRangeError,
    NotFoundException,
    RecurringConflictsError,
    ValidationException,
)
from ..domain.time_range import TimeRange, Weekday, overlaps, weekly_occurrences
from ..models.recurring_template import RecurringTemplate
from ..models.schedule_slot import SlotStatus
from ..repositories.factory import RepositoryFactory
from ..utils.time_helpers import time_to_string
from .base import BaseService
from .conflict_detector import ConflictDetector, ConflictReport
from .notifier import LoggingNotifier, Notifier, send_notification
from .slot_service import check_slot_duration

logger = logging.getLogger(__name__)

_OPEN_STATUSES = [SlotStatus.AVAILABLE.value, SlotStatus.UNAVAILABLE.value]
_HELD_STATUSES = [SlotStatus.ASSIGNED.value, SlotStatus.BOOKED.value]


@dataclass
class RecurringPattern:
    """A weekly window to expand: day, times and optional subject."""

    day_of_week: Weekday
    start_time: time
    end_time: time
    subject: Optional[str] = None
    duration_minutes: Optional[int] = None

    def __post_init__(self) -> None:
        self.day_of_week = self.time_range.weekday

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(
            start_time=self.start_time, end_time=self.end_time, day_of_week=self.day_of_week
        )

    @classmethod
    def from_template(cls, template: RecurringTemplate) -> "RecurringPattern":
        return cls(
            day_of_week=Weekday(template.day_of_week),
            start_time=template.start_time,
            end_time=template.end_time,
            subject=template.subject,
            duration_minutes=template.duration_minutes,
        )


@dataclass
class ExpansionOptions:
    preview_only: bool = False
    create_templates: bool = True
    create_occurrences: bool = True
    override_conflicts: bool = False
    exception_dates: FrozenSet[date] = frozenset()


@dataclass
class ExpansionResult:
    preview_only: bool
    slots_to_create: int = 0
    total_schedule_slots: int = 0
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    occurrences: List[Dict[str, Any]] = field(default_factory=list)
    created_template_ids: List[str] = field(default_factory=list)
    created_slot_ids: List[str] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_conflicts(self) -> int:
        return len(self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preview_only": self.preview_only,
            "slots_to_create": self.slots_to_create,
            "total_schedule_slots": self.total_schedule_slots,
            "total_conflicts": self.total_conflicts,
            "conflicts": self.conflicts,
            "occurrences": self.occurrences,
            "created_template_ids": self.created_template_ids,
            "created_slot_ids": self.created_slot_ids,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }


@dataclass
class _Candidate:
    pattern_index: int
    time_range: TimeRange
    report: Optional[ConflictReport] = None
    batch_conflicts: List[int] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.batch_conflicts) or bool(self.report and self.report.has_conflicts)


class RecurringExpander(BaseService):
    """Service for expanding weekly patterns and maintaining their series."""

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[Notifier] = None,
        conflict_detector: Optional[ConflictDetector] = None,
    ):
        super().__init__(db, clock)
        self.notifier = notifier or LoggingNotifier()
        self.conflict_detector = conflict_detector or ConflictDetector(db, clock)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.template_repository = RepositoryFactory.create_template_repository(db)

    def get_template(self, template_id: str) -> RecurringTemplate:
        template = self.template_repository.get_by_id(template_id, fresh=True)
        if template is None:
            raise NotFoundException(
                "Recurring template not found",
                code="TEMPLATE_NOT_FOUND",
                details={"template_id": template_id},
            )
        return template

    def _validate(self, patterns: Sequence[RecurringPattern], weeks: int) -> None:
        if not patterns:
            raise ValidationException("At least one pattern is required")
        if len(patterns) > settings.max_recurring_patterns:
            raise ValidationException(
                f"At most {settings.max_recurring_patterns} patterns per request",
                details={"patterns": len(patterns)},
            )
        if weeks < 1 or weeks > settings.max_recurring_weeks:
            raise ValidationException(
                f"weeks must be between 1 and {settings.max_recurring_weeks}",
                details={"weeks": weeks},
            )
        for pattern in patterns:
            span = check_slot_duration(pattern.time_range)
            if pattern.duration_minutes is not None and not 0 < pattern.duration_minutes <= span:
                raise InvalidRangeError(
                    "duration_minutes must fit inside the pattern's window",
                    details={**pattern.time_range.to_dict(), "duration_minutes": pattern.duration_minutes},
                )

    @BaseService.measure_operation("expand_recurring")
    def expand_recurring(
        self,
        owner_id: str,
        patterns: Sequence[RecurringPattern],
        weeks: int,
        start_date: Optional[date] = None,
        options: Optional[ExpansionOptions] = None,
        *,
        template_id: Optional[str] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ExpansionResult:
        """
        Expand ``patterns`` over ``weeks`` weeks starting at ``start_date``.

        Occurrence ``k`` of a pattern falls on the first matching weekday on
        or after ``start_date`` plus ``7*k`` days. ``template_id`` expands an
        already saved template, which then does not conflict with itself.

        Args:
            owner_id: Teacher the slots belong to
            patterns: Weekly windows to expand
            weeks: Number of weeks (1..max_recurring_weeks)
            start_date: First day considered; defaults to tomorrow
            options: Preview/commit flags and exception dates
            should_cancel: Polled between occurrence checks

        Raises:
            RecurringConflictsError: commit with conflicts and no override
        """
        options = options or ExpansionOptions()
        self._validate(patterns, weeks)
        start_date = start_date or self.clock.now().date() + timedelta(days=1)
        result = ExpansionResult(preview_only=options.preview_only)

        pattern_reports = self.conflict_detector.detect_conflicts_batch(
            owner_id,
            [p.time_range for p in patterns],
            exclude_template_ids=[template_id] if template_id else None,
            check_slots=False,
            check_blocked=False,
        )
        blocked_patterns = {i for i, report in enumerate(pattern_reports) if report.has_conflicts}

        candidates = self._screen(owner_id, patterns, weeks, start_date, options, should_cancel)
        result.cancelled = any(c.report is None for c in candidates)
        result.total_schedule_slots = len(candidates)
        result.occurrences = [
            {
                "pattern_index": index,
                **pattern.time_range.to_dict(),
                "dates": [c.time_range.date.isoformat() for c in candidates if c.pattern_index == index],
            }
            for index, pattern in enumerate(patterns)
        ]

        result.conflicts = [
            {"pattern_index": i, "date": None, **pattern_reports[i].to_dict(), "batch_conflicts": []}
            for i in sorted(blocked_patterns)
        ]
        result.conflicts.extend(self._conflict_entry(c) for c in candidates if c.has_conflicts)

        keep = self._kept(candidates, blocked_patterns, options.override_conflicts)
        result.slots_to_create = len(keep) if options.create_occurrences else 0
        kept_ids = {id(c) for c in keep}
        result.skipped = [
            {"pattern_index": c.pattern_index, "date": c.time_range.date.isoformat()}
            for c in candidates
            if id(c) not in kept_ids
        ]

        if options.preview_only or result.cancelled:
            return result
        if result.conflicts and not options.override_conflicts:
            raise RecurringConflictsError(result.conflicts)

        self._commit(owner_id, patterns, keep, blocked_patterns, options, template_id, result)
        self.log_operation(
            "expand_recurring",
            owner_id=owner_id,
            templates=len(result.created_template_ids),
            slots=len(result.created_slot_ids),
            skipped=len(result.skipped),
        )
        return result

    def expand_template(
        self,
        template_id: str,
        weeks: int,
        start_date: Optional[date] = None,
        options: Optional[ExpansionOptions] = None,
    ) -> ExpansionResult:
        """Materialize more occurrences of a saved template."""
        template = self.get_template(template_id)
        options = replace(options or ExpansionOptions(), create_templates=False)
        return self.expand_recurring(
            template.owner_id,
            [RecurringPattern.from_template(template)],
            weeks,
            start_date,
            options,
            template_id=template.id,
        )

    def _screen(
        self,
        owner_id: str,
        patterns: Sequence[RecurringPattern],
        weeks: int,
        start_date: date,
        options: ExpansionOptions,
        should_cancel: Optional[Callable[[], bool]],
    ) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for index, pattern in enumerate(patterns):
            for occurrence in weekly_occurrences(
                pattern.day_of_week, start_date, weeks, set(options.exception_dates)
            ):
                candidates.append(_Candidate(index, pattern.time_range.on(occurrence)))

        reports = self.conflict_detector.detect_conflicts_batch(
            owner_id,
            [c.time_range for c in candidates],
            check_templates=False,
            should_cancel=should_cancel,
        )
        for candidate, report in zip(candidates, reports):
            candidate.report = report

        by_date: Dict[date, List[_Candidate]] = {}
        for candidate in candidates:
            by_date.setdefault(candidate.time_range.date, []).append(candidate)
        for group in by_date.values():
            for i, first in enumerate(group):
                for second in group[i + 1 :]:
                    if overlaps(first.time_range, second.time_range):
                        first.batch_conflicts.append(second.pattern_index)
                        second.batch_conflicts.append(first.pattern_index)
        return candidates

    @staticmethod
    def _kept(candidates: List[_Candidate], blocked_patterns: set, override: bool) -> List[_Candidate]:
        """Occurrences that would be written; earlier patterns win clashes within the request."""
        kept: List[_Candidate] = []
        for candidate in candidates:
            if candidate.pattern_index in blocked_patterns:
                continue
            if candidate.report is None or candidate.report.has_conflicts:
                continue
            if candidate.batch_conflicts:
                if not override:
                    continue
                if any(overlaps(k.time_range, candidate.time_range) for k in kept):
                    continue
            kept.append(candidate)
        return kept

    @staticmethod
    def _conflict_entry(candidate: _Candidate) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "pattern_index": candidate.pattern_index,
            "date": candidate.time_range.date.isoformat(),
        }
        if candidate.report is not None:
            entry.update(candidate.report.to_dict())
        entry["batch_conflicts"] = sorted(set(candidate.batch_conflicts))
        entry["total_conflicts"] = entry.get("total_conflicts", 0) + len(entry["batch_conflicts"])
        return entry

    def _commit(
        self,
        owner_id: str,
        patterns: Sequence[RecurringPattern],
        keep: List[_Candidate],
        blocked_patterns: set,
        options: ExpansionOptions,
        template_id: Optional[str],
        result: ExpansionResult,
    ) -> None:
        now = self.clock.now()
        with self.transaction():
            template_ids: Dict[int, Optional[str]] = {i: template_id for i in range(len(patterns))}
            if options.create_templates and template_id is None:
                for index, pattern in enumerate(patterns):
                    if index in blocked_patterns:
                        continue
                    template = self.template_repository.create(
                        owner_id=owner_id,
                        day_of_week=pattern.day_of_week.value,
                        start_time=pattern.start_time,
                        end_time=pattern.end_time,
                        subject=pattern.subject,
                        duration_minutes=pattern.duration_minutes,
                        active=True,
                        created_at=now,
                        updated_at=now,
                    )
                    template_ids[index] = template.id
                    result.created_template_ids.append(template.id)

            if options.create_occurrences and keep:
                slots = self.slot_repository.create_slots(
                    [
                        {
                            "owner_id": owner_id,
                            "template_id": template_ids[c.pattern_index],
                            "date": c.time_range.date,
                            "start_time": c.time_range.start_time,
                            "end_time": c.time_range.end_time,
                            "duration_minutes": patterns[c.pattern_index].duration_minutes
                            or check_slot_duration(c.time_range),
                            "subject": patterns[c.pattern_index].subject,
                            "status": SlotStatus.AVAILABLE.value,
                            "created_at": now,
                            "updated_at": now,
                        }
                        for c in keep
                    ]
                )
                result.created_slot_ids = [slot.id for slot in slots]

    # Series maintenance

    @BaseService.measure_operation("update_series")
    def update_series(
        self,
        template_id: str,
        *,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        subject: Optional[str] = None,
        apply_from_date: Optional[date] = None,
        allow_conflicts: bool = False,
    ) -> Dict[str, Any]:
        """
        Change a template and carry the change to its future open occurrences.

        Held (assigned/booked) occurrences keep their times. Conflicts are
        checked against everything except the series itself.
        """
        template = self.get_template(template_id)
        new_range = TimeRange(
            start_time=start_time or template.start_time,
            end_time=end_time or template.end_time,
            day_of_week=Weekday(template.day_of_week),
        )
        check_slot_duration(new_range)
        from_date = apply_from_date or self.clock.now().date()

        series = self.slot_repository.get_template_occurrences(template.id, from_date=from_date)
        movable = [s for s in series if s.status in _OPEN_STATUSES]
        held = [s for s in series if s.status in _HELD_STATUSES]
        series_ids = [s.id for s in series]

        if not allow_conflicts:
            template_report = self.conflict_detector.detect_conflicts(
                template.owner_id,
                new_range,
                exclude_template_ids=[template.id],
                check_slots=False,
                check_blocked=False,
            )
            reports = self.conflict_detector.detect_conflicts_batch(
                template.owner_id,
                [new_range.on(s.date) for s in movable],
                exclude_slot_ids=series_ids,
                exclude_template_ids=[template.id],
            )
            conflicts = [r.to_dict() for r in [template_report, *reports] if r.has_conflicts]
            if conflicts:
                raise RecurringConflictsError(conflicts)

        now = self.clock.now()
        moved, skipped = [], []
        with self.transaction():
            changes: Dict[str, Any] = {
                "start_time": new_range.start_time,
                "end_time": new_range.end_time,
                "updated_at": now,
            }
            if subject is not None:
                changes["subject"] = subject
            self.template_repository.update(template.id, **changes)

            slot_values = dict(changes, duration_minutes=check_slot_duration(new_range))
            if template.duration_minutes:
                slot_values["duration_minutes"] = min(template.duration_minutes, slot_values["duration_minutes"])
            for slot in movable:
                updated = self.slot_repository.compare_and_swap(
                    slot.id,
                    expected_version=slot.version,
                    expected_status=slot.status,
                    values=slot_values,
                )
                (moved if updated is not None else skipped).append(slot.id)

        self.log_operation("update_series", template_id=template_id, moved=len(moved), skipped=len(skipped))
        return {
            "template_id": template.id,
            "start_time": time_to_string(new_range.start_time),
            "end_time": time_to_string(new_range.end_time),
            "updated_slot_ids": moved,
            "skipped_slot_ids": skipped,
            "held_slot_ids": [s.id for s in held],
        }

    @BaseService.measure_operation("delete_series")
    def delete_series(self, template_id: str, force: bool = False) -> Dict[str, Any]:
        """
        Delete a template and its future open occurrences.

        Assigned and booked occurrences stay, unlinked from the template,
        unless ``force`` is given; then they are deleted too and the held or
        booked student is told. Past occurrences are kept as history.
        """
        template = self.get_template(template_id)
        today = self.clock.now().date()
        occurrences = self.slot_repository.get_template_occurrences(template.id)

        doomed, displaced, detached = [], [], []
        for slot in occurrences:
            if slot.date < today or SlotStatus(slot.status).is_terminal:
                detached.append(slot)
            elif slot.status in _OPEN_STATUSES:
                doomed.append(slot)
            elif force:
                displaced.append(slot)
            else:
                detached.append(slot)

        notices = [
            (slot.booked_by or slot.assigned_student_id, str(slot.time_range)) for slot in displaced
        ]
        deleted_ids: List[str] = []
        with self.transaction():
            self.slot_repository.detach_from_template([s.id for s in detached])
            for slot in doomed + displaced:
                if self.slot_repository.delete_slot(slot.id, expected_version=slot.version):
                    deleted_ids.append(slot.id)
                else:
                    # Changed since we looked; keep it as a standalone slot
                    self.slot_repository.detach_from_template([slot.id])
                    detached.append(slot)
            self.template_repository.delete(template.id)

        for student_id, description in notices:
            send_notification(self.notifier, student_id, f"Your lesson on {description} was removed")

        self.log_operation(
            "delete_series", template_id=template_id, deleted=len(deleted_ids), detached=len(detached)
        )
        return {
            "template_id": template_id,
            "deleted_slot_ids": deleted_ids,
            "detached_slot_ids": [s.id for s in detached],
            "notified_students": len([n for n in notices if n[0]]),
        }
