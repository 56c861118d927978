from datetime import time

from pydantic import ValidationError
import pytest

from tutorslots.core.config import Settings, settings


def test_test_environment_is_pinned() -> None:
    assert settings.is_testing is True
    assert settings.environment == "test"
    assert settings.database_url.startswith("sqlite")


def test_wall_clock_strings_are_parsed() -> None:
    configured = Settings(schedule_day_start="07:30", schedule_day_end="21:00:00")
    assert configured.schedule_day_start == time(7, 30)
    assert configured.schedule_day_end == time(21)


def test_boolean_strings() -> None:
    assert Settings(database_echo="yes").database_echo is True
    assert Settings(database_echo="off").database_echo is False


def test_inverted_bounds_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(schedule_day_start="20:00", schedule_day_end="08:00")
    with pytest.raises(ValidationError):
        Settings(min_slot_minutes=120, max_slot_minutes=60)
