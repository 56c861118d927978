import pytest

from tutorslots.services.conflict_detector import ConflictDetector
from tutorslots.services.conflict_resolver import ConflictResolver
from tutorslots.services.recurring_expander import RecurringExpander
from tutorslots.services.slot_service import SlotService
from tutorslots.services.waitlist_service import WaitlistService


@pytest.fixture
def detector(unit_db, clock):
    return ConflictDetector(unit_db, clock)


@pytest.fixture
def waitlist_service(unit_db, clock, notifier):
    return WaitlistService(unit_db, clock, notifier)


@pytest.fixture
def slot_service(unit_db, clock, notifier, detector, waitlist_service):
    return SlotService(
        unit_db, clock, notifier, conflict_detector=detector, waitlist_service=waitlist_service
    )


@pytest.fixture
def expander(unit_db, clock, notifier, detector):
    return RecurringExpander(unit_db, clock, notifier, conflict_detector=detector)


@pytest.fixture
def resolver(unit_db, clock, notifier, detector, slot_service):
    return ConflictResolver(
        unit_db, clock, notifier, conflict_detector=detector, slot_service=slot_service
    )
