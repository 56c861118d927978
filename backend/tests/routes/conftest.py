import pytest
from fastapi.testclient import TestClient

from tutorslots.api.dependencies import get_clock, get_db, get_notifier
from tutorslots.main import create_app


@pytest.fixture
def client(session_factory, clock, notifier):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def slot_payload(date: str = "2026-03-03", start: str = "09:00", end: str = "10:00", **extra):
    payload = {
        "owner_id": "teacher-1",
        "time_range": {"date": date, "start_time": start, "end_time": end},
    }
    payload.update(extra)
    return payload
