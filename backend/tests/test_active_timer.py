from __future__ import annotations

import datetime as dt

from fastapi.testclient import TestClient


def _iso(value: dt.datetime) -> str:
    return value.isoformat()


def test_start_requires_authentication(client: TestClient, categories) -> None:
    response = client.post("/team/active", json={"category_id": categories["Development"]})
    assert response.status_code == 401


def test_start_and_read_back_timer(client: TestClient, member_headers, categories) -> None:
    response = client.post(
        "/team/active",
        json={"category_id": categories["Development"], "description": "Refactoring"},
        headers=member_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["category_name"] == "Development"
    assert data["description"] == "Refactoring"
    assert data["user_name"] == "Max Member"
    assert data["start_time"].endswith("+00:00")
    assert data["elapsed_display"].startswith("00:00:0")

    mine = client.get("/team/active/me", headers=member_headers)
    assert mine.status_code == 200
    assert mine.json()["id"] == data["id"]


def test_no_timer_reads_as_null(client: TestClient, member_headers) -> None:
    response = client.get("/team/active/me", headers=member_headers)
    assert response.status_code == 200
    assert response.json() is None


def test_second_start_replaces_the_first(client: TestClient, member_headers, categories) -> None:
    client.post("/team/active", json={"category_id": categories["Development"]}, headers=member_headers)
    second = client.post(
        "/team/active",
        json={"category_id": categories["Meetings"], "description": "Standup"},
        headers=member_headers,
    )
    assert second.status_code == 201

    team = client.get("/team/active", headers=member_headers).json()
    assert len(team) == 1
    assert team[0]["category_name"] == "Meetings"
    assert team[0]["description"] == "Standup"


def test_elapsed_time_survives_a_reload(client: TestClient, member_headers, categories) -> None:
    started = dt.datetime.now(dt.timezone.utc) - dt.timedelta(seconds=90)
    client.post(
        "/team/active",
        json={"category_id": categories["Research"], "start_time": _iso(started)},
        headers=member_headers,
    )

    data = client.get("/team/active/me", headers=member_headers).json()
    assert 90 <= data["elapsed_seconds"] <= 95
    assert data["elapsed_display"].startswith("00:01:3")


def test_team_view_lists_longest_running_first(
    client: TestClient, admin_headers, member_headers, categories
) -> None:
    now = dt.datetime.now(dt.timezone.utc)
    client.post(
        "/team/active",
        json={"category_id": categories["Development"], "start_time": _iso(now - dt.timedelta(minutes=5))},
        headers=member_headers,
    )
    client.post(
        "/team/active",
        json={"category_id": categories["Admin"], "start_time": _iso(now - dt.timedelta(hours=1))},
        headers=admin_headers,
    )

    team = client.get("/team/active", headers=member_headers).json()
    assert [timer["user_name"] for timer in team] == ["Ada Admin", "Max Member"]


def test_update_changes_metadata_but_keeps_start(client: TestClient, member_headers, categories) -> None:
    started = client.post(
        "/team/active", json={"category_id": categories["Development"]}, headers=member_headers
    ).json()

    response = client.patch(
        "/team/active",
        json={"category_id": categories["Meetings"], "description": "Retro"},
        headers=member_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["category_id"] == categories["Meetings"]
    assert data["description"] == "Retro"
    assert data["start_time"] == started["start_time"]


def test_update_without_timer_is_not_found(client: TestClient, member_headers, categories) -> None:
    response = client.patch("/team/active", json={"category_id": categories["Development"]}, headers=member_headers)
    assert response.status_code == 404


def test_start_with_unknown_category_is_rejected(client: TestClient, member_headers) -> None:
    response = client.post("/team/active", json={"category_id": 9999}, headers=member_headers)
    assert response.status_code == 404


def test_stop_records_an_entry_and_clears_the_timer(client: TestClient, member_headers, categories) -> None:
    start = dt.datetime(2024, 5, 1, 10, 0, tzinfo=dt.timezone.utc)
    client.post(
        "/team/active",
        json={"category_id": categories["Development"], "description": "Feature work", "start_time": _iso(start)},
        headers=member_headers,
    )

    response = client.post(
        "/team/active/stop",
        json={"end_time": _iso(start + dt.timedelta(seconds=125))},
        headers=member_headers,
    )
    assert response.status_code == 200
    entry = response.json()["entry"]
    assert entry["duration"] == 125
    assert entry["duration_display"] == "2m"
    assert entry["description"] == "Feature work"
    assert entry["category_name"] == "Development"
    assert entry["start_time"] == "2024-05-01T10:00:00+00:00"
    assert entry["end_time"] == "2024-05-01T10:02:05+00:00"

    assert client.get("/team/active/me", headers=member_headers).json() is None
    assert client.get("/team/active", headers=member_headers).json() == []
    entries = client.get("/time-entries", headers=member_headers).json()
    assert [item["id"] for item in entries] == [entry["id"]]


def test_stop_after_pause_uses_reported_start_and_duration(client: TestClient, member_headers, categories) -> None:
    start = dt.datetime(2024, 5, 1, 10, 0, tzinfo=dt.timezone.utc)
    client.post(
        "/team/active",
        json={"category_id": categories["Meetings"], "start_time": _iso(start)},
        headers=member_headers,
    )

    resumed = start + dt.timedelta(minutes=20)
    response = client.post(
        "/team/active/stop",
        json={
            "start_time": _iso(resumed),
            "end_time": _iso(resumed + dt.timedelta(minutes=10)),
            "duration": 600,
            "description": "  ",
        },
        headers=member_headers,
    )
    entry = response.json()["entry"]
    assert entry["duration"] == 600
    assert entry["start_time"] == "2024-05-01T10:20:00+00:00"
    assert entry["description"] == "No description"


def test_stop_without_timer_is_a_noop(client: TestClient, member_headers) -> None:
    first = client.post("/team/active/stop", headers=member_headers)
    assert first.status_code == 200
    assert first.json() == {"entry": None}
    assert client.get("/time-entries", headers=member_headers).json() == []


def test_stop_with_zero_elapsed_records_nothing(client: TestClient, member_headers, categories) -> None:
    client.post("/team/active", json={"category_id": categories["Development"]}, headers=member_headers)

    response = client.post("/team/active/stop", json={"duration": 0}, headers=member_headers)
    assert response.json() == {"entry": None}
    assert client.get("/team/active/me", headers=member_headers).json() is None
    assert client.get("/time-entries", headers=member_headers).json() == []


def test_rejected_stop_leaves_timer_running(client: TestClient, member_headers, categories) -> None:
    start = dt.datetime(2024, 5, 1, 10, 0, tzinfo=dt.timezone.utc)
    client.post(
        "/team/active",
        json={"category_id": categories["Development"], "start_time": _iso(start)},
        headers=member_headers,
    )

    response = client.post(
        "/team/active/stop",
        json={"end_time": _iso(start - dt.timedelta(minutes=1))},
        headers=member_headers,
    )
    assert response.status_code == 400
    assert client.get("/team/active/me", headers=member_headers).json() is not None
    assert client.get("/time-entries", headers=member_headers).json() == []


def test_discard_is_idempotent(client: TestClient, member_headers, categories) -> None:
    client.post("/team/active", json={"category_id": categories["Development"]}, headers=member_headers)

    assert client.delete("/team/active", headers=member_headers).status_code == 204
    assert client.delete("/team/active", headers=member_headers).status_code == 204
    assert client.get("/team/active/me", headers=member_headers).json() is None
    assert client.get("/time-entries", headers=member_headers).json() == []
