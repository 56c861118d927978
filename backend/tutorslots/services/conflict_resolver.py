# backend/tutorslots/services/conflict_resolver.py
"""
Conflict Resolver Service for the scheduling core.

Given proposed ranges that collide with the schedule, either suggests
nearby free ranges, applies the closest free one, or applies the original
range regardless of conflicts.

The search is a bounded, deterministic walk: shift by ``step`` minutes,
then ``2*step``, ... up to ``max_adjustment_minutes``, later before
earlier at equal distance, then (optionally) the same window on nearby
days. Every candidate is checked against one snapshot of the owner's
schedule; applying a candidate re-checks against the live store.
"""

from dataclasses import dataclass, field
from datetime import time, timedelta
from enum import Enum
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import (
    DomainException,
    InvalidRangeError,
    InvalidTransitionError,
    NoResolutionFoundError,
    SlotOverlapError,
    ValidationException,
)
from ..domain.time_range import (
    ShiftDirection,
    TimeRange,
    Weekday,
    move_to_day,
    shift,
)
from ..models.schedule_slot import SlotStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .conflict_detector import ConflictDetector
from .notifier import Notifier
from .slot_service import SlotService, check_slot_duration

logger = logging.getLogger(__name__)

BUSINESS_HOURS = (time(9, 0), time(17, 0))
EARLY_CUTOFF = time(8, 0)
LATE_CUTOFF = time(19, 0)
DAY_CHANGE_LIMIT = 3


class ResolutionStrategy(str, Enum):
    SUGGEST_ALTERNATIVES = "suggest_alternatives"
    AUTO_ADJUST = "auto_adjust"
    FORCE_OVERRIDE = "force_override"


class PreferredDirection(str, Enum):
    EARLIER = "earlier"
    LATER = "later"
    ANY = "any"


@dataclass
class AdjustmentPreferences:
    preferred_direction: PreferredDirection = PreferredDirection.ANY
    max_adjustment_minutes: int = settings.resolver_default_max_adjustment_minutes
    allow_day_change: bool = False
    step_minutes: int = settings.resolver_step_minutes
    max_candidates: int = settings.resolver_max_candidates

    def __post_init__(self) -> None:
        self.preferred_direction = PreferredDirection(self.preferred_direction)
        low, high = settings.resolver_min_adjustment_minutes, settings.resolver_max_adjustment_limit_minutes
        if not low <= self.max_adjustment_minutes <= high:
            raise ValidationException(
                f"max_adjustment_minutes must be between {low} and {high}",
                details={"max_adjustment_minutes": self.max_adjustment_minutes},
            )
        if self.step_minutes <= 0 or self.max_candidates <= 0:
            raise ValidationException("step_minutes and max_candidates must be positive")

    @property
    def directions(self) -> List[ShiftDirection]:
        if self.preferred_direction == PreferredDirection.EARLIER:
            return [ShiftDirection.EARLIER]
        if self.preferred_direction == PreferredDirection.LATER:
            return [ShiftDirection.LATER]
        return [ShiftDirection.LATER, ShiftDirection.EARLIER]


@dataclass
class ConflictItem:
    """
    One proposed range to resolve.

    ``slot_id`` names an existing open slot being moved; without it the
    range is materialized as a new slot (dated) or template (weekly).
    """

    proposed_range: TimeRange
    conflicting_slot_ids: List[str] = field(default_factory=list)
    slot_id: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class Suggestion:
    time_range: TimeRange
    adjustment_minutes: int
    direction: str
    confidence: str
    score: int
    day_offset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.time_range.to_dict(),
            "adjustment_minutes": self.adjustment_minutes,
            "direction": self.direction,
            "day_offset": self.day_offset,
            "confidence": self.confidence,
            "score": self.score,
        }


@dataclass
class Resolution:
    conflict_index: int
    original_range: TimeRange
    status: str
    suggestions: List[Suggestion] = field(default_factory=list)
    applied: Optional[Suggestion] = None
    slot_id: Optional[str] = None
    template_id: Optional[str] = None
    candidates_checked: int = 0
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_index": self.conflict_index,
            "original_range": self.original_range.to_dict(),
            "status": self.status,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "applied_range": self.applied.to_dict() if self.applied else None,
            "slot_id": self.slot_id,
            "template_id": self.template_id,
            "candidates_checked": self.candidates_checked,
            "error": self.error,
        }


@dataclass
class ResolutionResult:
    strategy: ResolutionStrategy
    resolutions: List[Resolution] = field(default_factory=list)
    cancelled: bool = False

    @property
    def resolved_count(self) -> int:
        return sum(1 for r in self.resolutions if r.status in ("resolved", "overridden"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "resolved_count": self.resolved_count,
            "total_conflicts": len(self.resolutions),
            "cancelled": self.cancelled,
            "resolutions": [r.to_dict() for r in self.resolutions],
        }


def confidence_for(adjustment: int, step: int, day_offset: int = 0) -> str:
    """High within the first probe, medium within two, low beyond or across days."""
    if day_offset:
        return "low"
    if adjustment <= step:
        return "high"
    if adjustment <= 2 * step:
        return "medium"
    return "low"


def score_for(candidate: TimeRange, adjustment: int, direction: str, day_offset: int = 0) -> int:
    score = 100 - adjustment - 25 * abs(day_offset)
    if candidate.start_time >= BUSINESS_HOURS[0] and candidate.end_time <= BUSINESS_HOURS[1]:
        score += 20
    if candidate.start_time < EARLY_CUTOFF or candidate.end_time > LATE_CUTOFF:
        score -= 15
    if direction == ShiftDirection.LATER.value:
        score += 5
    return score


class ConflictResolver(BaseService):
    """Service for resolving conflicts by shifting proposed ranges."""

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[Notifier] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        slot_service: Optional[SlotService] = None,
    ):
        super().__init__(db, clock)
        self.conflict_detector = conflict_detector or ConflictDetector(db, clock)
        self.slot_service = slot_service or SlotService(
            db, clock, notifier, conflict_detector=self.conflict_detector
        )
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.template_repository = RepositoryFactory.create_template_repository(db)

    # Candidate generation

    def _in_schedule_day(self, candidate: TimeRange) -> bool:
        return (
            candidate.start_time >= settings.schedule_day_start
            and candidate.end_time <= settings.schedule_day_end
        )

    def candidates(
        self, original: TimeRange, prefs: AdjustmentPreferences
    ) -> Iterator[Tuple[TimeRange, int, str, int]]:
        """
        Yield ``(range, adjustment_minutes, direction, day_offset)`` in
        closest-first order, never beyond ``max_adjustment_minutes``.
        """
        magnitude = prefs.step_minutes
        while magnitude <= prefs.max_adjustment_minutes:
            for direction in prefs.directions:
                try:
                    moved = shift(original, magnitude, direction)
                except InvalidRangeError:
                    continue
                if self._in_schedule_day(moved):
                    yield moved, magnitude, direction.value, 0
            magnitude += prefs.step_minutes

        if not prefs.allow_day_change:
            return
        for offset in self._day_offsets(original):
            yield move_to_day(original, offset), 0, "day_change", offset

    def _day_offsets(self, original: TimeRange) -> List[int]:
        if original.date is None:
            # Neighbouring weekdays first, then the rest of the working week
            offsets = [-1, 1]
            for day in (Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY):
                delta = (day.index - original.weekday.index) % 7
                if delta and delta not in (1, 6) and delta not in offsets:
                    offsets.append(delta)
            return offsets[:DAY_CHANGE_LIMIT]
        today = self.clock.now().date()
        offsets = []
        for distance in range(1, DAY_CHANGE_LIMIT + 1):
            offsets.extend([distance, -distance])
        return [o for o in offsets if original.date + timedelta(days=o) >= today]

    # Search

    def search(
        self,
        owner_id: str,
        item: ConflictItem,
        prefs: AdjustmentPreferences,
        *,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Tuple[List[Suggestion], int, bool]:
        """
        Walk the candidate space against one schedule snapshot.

        Returns:
            (conflict-free suggestions closest-first, candidates checked,
            whether the walk was cancelled)
        """
        original = item.proposed_range
        pool = [(original, 0, "none", 0)] + list(self.candidates(original, prefs))
        pool = pool[: prefs.max_candidates + 1]
        exclude_slots, exclude_templates = self._own_footprint(item)
        snapshot = self.conflict_detector.load_snapshot(
            owner_id,
            self.conflict_detector.window_for([c[0] for c in pool], None),
            exclude_slot_ids=exclude_slots,
            exclude_template_ids=exclude_templates,
        )

        found: List[Suggestion] = []
        checked = 0
        for candidate, adjustment, direction, day_offset in pool:
            if should_cancel is not None and should_cancel():
                return found, checked, True
            checked += 1
            if snapshot.check(candidate).has_conflicts:
                continue
            found.append(
                Suggestion(
                    time_range=candidate,
                    adjustment_minutes=adjustment,
                    direction=direction,
                    confidence=confidence_for(adjustment, prefs.step_minutes, day_offset),
                    score=score_for(candidate, adjustment, direction, day_offset),
                    day_offset=day_offset,
                )
            )
        return found, checked, False

    def _own_footprint(self, item: ConflictItem) -> Tuple[List[str], List[str]]:
        # A slot being moved must not collide with itself or its own series
        if not item.slot_id:
            return [], []
        slot = self.slot_repository.get_by_id(item.slot_id)
        if slot is None or not slot.template_id:
            return [item.slot_id], []
        return [item.slot_id], [slot.template_id]

    @BaseService.measure_operation("resolve_conflicts")
    def resolve_conflicts(
        self,
        owner_id: str,
        conflicts: Sequence[ConflictItem],
        strategy: ResolutionStrategy,
        preferences: Optional[AdjustmentPreferences] = None,
        *,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ResolutionResult:
        """
        Resolve each conflict with ``strategy``.

        Failures are recorded per conflict (status "failed" with the error
        payload) and the remaining conflicts are still processed; each
        applied conflict commits on its own.
        """
        strategy = ResolutionStrategy(strategy)
        prefs = preferences or AdjustmentPreferences()
        result = ResolutionResult(strategy=strategy)

        for index, item in enumerate(conflicts):
            if should_cancel is not None and should_cancel():
                result.cancelled = True
                break
            if strategy == ResolutionStrategy.FORCE_OVERRIDE:
                resolution = self._force(owner_id, index, item)
            elif strategy == ResolutionStrategy.AUTO_ADJUST:
                resolution, cancelled = self._auto_adjust(owner_id, index, item, prefs, should_cancel)
                result.cancelled = cancelled
            else:
                suggestions, checked, cancelled = self.search(
                    owner_id, item, prefs, should_cancel=should_cancel
                )
                resolution = Resolution(
                    conflict_index=index,
                    original_range=item.proposed_range,
                    status="suggested" if suggestions else "no_alternatives",
                    suggestions=suggestions,
                    candidates_checked=checked,
                )
                result.cancelled = result.cancelled or cancelled
            result.resolutions.append(resolution)
            if result.cancelled:
                break

        self.logger.info(
            "conflicts_resolved",
            extra={
                "owner_id": owner_id,
                "strategy": strategy.value,
                "conflicts": len(conflicts),
                "resolved": result.resolved_count,
            },
        )
        return result

    def _auto_adjust(
        self,
        owner_id: str,
        index: int,
        item: ConflictItem,
        prefs: AdjustmentPreferences,
        should_cancel: Optional[Callable[[], bool]],
    ) -> Tuple[Resolution, bool]:
        suggestions, checked, cancelled = self.search(owner_id, item, prefs, should_cancel=should_cancel)
        resolution = Resolution(
            conflict_index=index, original_range=item.proposed_range, status="failed", candidates_checked=checked
        )
        for suggestion in suggestions:
            try:
                self._apply(owner_id, item, suggestion.time_range, check=True, resolution=resolution)
            except SlotOverlapError:
                # Schedule changed after the snapshot; try the next one
                continue
            except DomainException as e:
                resolution.error = e.to_dict()
                self._log_failure(owner_id, item, e)
                return resolution, cancelled
            resolution.status = "resolved"
            resolution.applied = suggestion
            return resolution, cancelled

        resolution.error = NoResolutionFoundError(item.proposed_range.to_dict(), checked).to_dict()
        return resolution, cancelled

    def _force(self, owner_id: str, index: int, item: ConflictItem) -> Resolution:
        resolution = Resolution(conflict_index=index, original_range=item.proposed_range, status="overridden")
        try:
            self._apply(owner_id, item, item.proposed_range, check=False, resolution=resolution)
        except DomainException as e:
            resolution.status = "failed"
            resolution.error = e.to_dict()
            self._log_failure(owner_id, item, e)
            return resolution
        resolution.applied = Suggestion(
            time_range=item.proposed_range,
            adjustment_minutes=0,
            direction="none",
            confidence="high",
            score=score_for(item.proposed_range, 0, "none"),
        )
        self.logger.warning(
            "conflict_force_override",
            extra={"owner_id": owner_id, "range": str(item.proposed_range), "slot_id": item.slot_id},
        )
        return resolution

    def _log_failure(self, owner_id: str, item: ConflictItem, error: DomainException) -> None:
        self.logger.warning(
            "conflict_resolution_failed",
            extra={
                "owner_id": owner_id,
                "slot_id": item.slot_id,
                "range": str(item.proposed_range),
                "code": error.code,
            },
        )

    # Writes

    def _apply(
        self,
        owner_id: str,
        item: ConflictItem,
        target: TimeRange,
        *,
        check: bool,
        resolution: Resolution,
    ) -> None:
        if item.slot_id:
            resolution.slot_id = self._move_slot(owner_id, item.slot_id, target, check=check)
        elif target.date is not None:
            slot = self.slot_service.create_slot(
                owner_id, target, subject=item.subject, allow_conflicts=not check
            )
            resolution.slot_id = slot.id
        else:
            resolution.template_id = self._create_template(owner_id, target, item.subject, check=check)

    def _move_slot(self, owner_id: str, slot_id: str, target: TimeRange, *, check: bool) -> str:
        slot = self.slot_service.get_slot(slot_id)
        if slot.status not in (SlotStatus.AVAILABLE.value, SlotStatus.UNAVAILABLE.value):
            raise InvalidTransitionError(slot.id, slot.status, "reschedule")
        if target.date is None:
            target = target.on(slot.date)
        minutes = check_slot_duration(target)
        if check:
            report = self.conflict_detector.detect_conflicts(
                owner_id,
                target,
                exclude_slot_ids=[slot.id],
                exclude_template_ids=[slot.template_id] if slot.template_id else None,
            )
            if report.has_conflicts:
                raise SlotOverlapError(report.to_dict())
        now = self.clock.now()
        with self.transaction():
            moved = self.slot_repository.compare_and_swap(
                slot.id,
                expected_version=slot.version,
                expected_status=slot.status,
                values={
                    "date": target.date,
                    "start_time": target.start_time,
                    "end_time": target.end_time,
                    "duration_minutes": minutes,
                    "updated_at": now,
                },
            )
            if moved is None:
                raise InvalidTransitionError(slot.id, slot.status, "reschedule", message="Slot changed; retry")
        return slot.id

    def _create_template(self, owner_id: str, target: TimeRange, subject: Optional[str], *, check: bool) -> str:
        check_slot_duration(target)
        if check:
            report = self.conflict_detector.detect_conflicts(owner_id, target)
            if report.has_conflicts:
                raise SlotOverlapError(report.to_dict())
        now = self.clock.now()
        with self.transaction():
            template = self.template_repository.create(
                owner_id=owner_id,
                day_of_week=target.weekday.value,
                start_time=target.start_time,
                end_time=target.end_time,
                subject=subject,
                active=True,
                created_at=now,
                updated_at=now,
            )
        return template.id
