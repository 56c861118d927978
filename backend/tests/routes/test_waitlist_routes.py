from fastapi.testclient import TestClient

OWNER = "teacher-1"
DESIRED = {"day_of_week": "Thursday", "start_time": "17:00", "end_time": "18:00"}


def enqueue(client: TestClient, requester: str, desired: dict = DESIRED) -> dict:
    response = client.post(
        "/api/v1/waitlist",
        json={"owner_id": OWNER, "requester_id": requester, "desired_range": desired, "notes": "any week"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_enqueue_and_list(client: TestClient) -> None:
    first = enqueue(client, "a")
    enqueue(client, "b")

    assert first["priority"] == 0
    assert first["status"] == "waiting"
    assert first["bucket_key"] == "weekly:Thursday:17:00-18:00"

    listing = client.get("/api/v1/waitlist", params={"owner_id": OWNER})
    assert [e["requester_id"] for e in listing.json()["entries"]] == ["a", "b"]

    mine = client.get("/api/v1/waitlist", params={"requester_id": "b"})
    assert mine.json()["total"] == 1


def test_listing_needs_a_filter(client: TestClient) -> None:
    response = client.get("/api/v1/waitlist")
    assert response.status_code == 400


def test_duplicate_enqueue_conflicts(client: TestClient) -> None:
    first = enqueue(client, "a")
    response = client.post(
        "/api/v1/waitlist",
        json={
            "owner_id": OWNER,
            "requester_id": "a",
            "desired_range": {"day_of_week": "Thursday", "start_time": "17:30", "end_time": "18:30"},
        },
    )
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_ON_WAITLIST"
    assert response.json()["errors"]["existing_entry_id"] == first["id"]


def test_reorder_and_position(client: TestClient) -> None:
    a = enqueue(client, "a")
    b = enqueue(client, "b")

    line = client.post(f"/api/v1/waitlist/{b['id']}/promote").json()
    assert [e["requester_id"] for e in line["entries"]] == ["b", "a"]

    head = client.post(f"/api/v1/waitlist/{b['id']}/promote")
    assert head.status_code == 422
    assert head.json()["code"] == "NO_ADJACENT_ENTRY"

    line = client.post(f"/api/v1/waitlist/{b['id']}/demote").json()
    assert [e["requester_id"] for e in line["entries"]] == ["a", "b"]

    position = client.get(f"/api/v1/waitlist/{b['id']}/position").json()
    assert position["position"] == 2
    assert position["advisory"] is True
    assert position["estimated_wait_hours"] is None


def test_offer_lifecycle(client: TestClient, clock, notifier) -> None:
    a = enqueue(client, "a")
    b = enqueue(client, "b")

    offered = client.post(f"/api/v1/waitlist/{a['id']}/notify", json={"ttl_hours": 1, "message": "Slot free"})
    assert offered.json()["status"] == "notified"
    assert notifier.sent[0][:2] == ("a", "Slot free")

    extended = client.post(f"/api/v1/waitlist/{a['id']}/extend", json={"hours": 1})
    assert extended.status_code == 200

    clock.advance(hours=3)
    sweep = client.post("/api/v1/waitlist/sweep").json()
    assert sweep["expired_ids"] == [a["id"]]
    assert sweep["notified_ids"] == [b["id"]]

    late = client.post(f"/api/v1/waitlist/{a['id']}/fulfill")
    assert late.status_code == 409

    done = client.post(f"/api/v1/waitlist/{b['id']}/fulfill")
    assert done.json()["status"] == "fulfilled"
    assert client.get(f"/api/v1/waitlist/{b['id']}/position").json()["position"] is None


def test_remove_notified_entry_promotes_successor(client: TestClient) -> None:
    a = enqueue(client, "a")
    b = enqueue(client, "b")
    client.post(f"/api/v1/waitlist/{a['id']}/notify", json={})

    response = client.delete(f"/api/v1/waitlist/{a['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["removed_id"] == a["id"]
    assert body["notified_entry"]["id"] == b["id"]
    assert body["notified_entry"]["priority"] == 0
