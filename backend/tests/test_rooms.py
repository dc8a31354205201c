from __future__ import annotations

from fastapi.testclient import TestClient


def _rooms(client: TestClient, headers) -> dict:
    return {room["name"]: room for room in client.get("/rooms", headers=headers).json()}


def test_default_rooms_start_empty(client: TestClient, member_headers) -> None:
    rooms = _rooms(client, member_headers)
    assert set(rooms) == {"Open Office", "Focus Room"}
    assert all(room["participants"] == [] for room in rooms.values())


def test_joining_a_room_leaves_the_previous_one(client: TestClient, member_headers) -> None:
    rooms = _rooms(client, member_headers)
    office, focus = rooms["Open Office"]["id"], rooms["Focus Room"]["id"]

    assert client.post(f"/rooms/{office}/join", headers=member_headers).json() == {"success": True, "meet_link": None}
    client.post(f"/rooms/{focus}/join", headers=member_headers)

    rooms = _rooms(client, member_headers)
    assert rooms["Open Office"]["participants"] == []
    assert [p["user_name"] for p in rooms["Focus Room"]["participants"]] == ["Max Member"]


def test_rejoining_the_same_room_keeps_one_membership(client: TestClient, member_headers) -> None:
    office = _rooms(client, member_headers)["Open Office"]["id"]
    client.post(f"/rooms/{office}/join", headers=member_headers)
    client.post(f"/rooms/{office}/join", headers=member_headers)

    assert len(_rooms(client, member_headers)["Open Office"]["participants"]) == 1


def test_participants_listed_in_join_order(client: TestClient, member_headers, admin_headers) -> None:
    office = _rooms(client, member_headers)["Open Office"]["id"]
    client.post(f"/rooms/{office}/join", headers=admin_headers)
    client.post(f"/rooms/{office}/join", headers=member_headers)

    participants = _rooms(client, member_headers)["Open Office"]["participants"]
    assert [p["user_name"] for p in participants] == ["Ada Admin", "Max Member"]
    assert participants[0]["joined_at"].endswith("+00:00")


def test_leave_room(client: TestClient, member_headers) -> None:
    office = _rooms(client, member_headers)["Open Office"]["id"]
    client.post(f"/rooms/{office}/join", headers=member_headers)

    response = client.post(f"/rooms/{office}/leave", headers=member_headers)
    assert response.status_code == 200
    assert _rooms(client, member_headers)["Open Office"]["participants"] == []
    assert client.post("/rooms/9999/leave", headers=member_headers).status_code == 404


def test_room_admin_and_meet_link(client: TestClient, admin_headers, member_headers) -> None:
    assert client.post("/rooms", json={"name": "War Room"}, headers=member_headers).status_code == 403

    created = client.post(
        "/rooms", json={"name": "War Room", "meet_link": "https://meet.example.com/war"}, headers=admin_headers
    )
    assert created.status_code == 201
    room = created.json()

    joined = client.post(f"/rooms/{room['id']}/join", headers=member_headers).json()
    assert joined["meet_link"] == "https://meet.example.com/war"

    updated = client.put(f"/rooms/{room['id']}", json={"name": "Situation Room"}, headers=admin_headers).json()
    assert updated["name"] == "Situation Room"
    assert updated["meet_link"] is None
    assert len(updated["participants"]) == 1


def test_room_delete_requires_confirmation(client: TestClient, admin_headers, member_headers) -> None:
    office = _rooms(client, member_headers)["Open Office"]["id"]
    client.post(f"/rooms/{office}/join", headers=member_headers)

    refused = client.request("DELETE", f"/rooms/{office}", json={"confirmation": "delete"}, headers=admin_headers)
    assert refused.status_code == 400

    deleted = client.request(
        "DELETE", f"/rooms/{office}", json={"confirmation": "delete this room"}, headers=admin_headers
    )
    assert deleted.status_code == 204
    assert set(_rooms(client, member_headers)) == {"Focus Room"}

    focus = _rooms(client, member_headers)["Focus Room"]["id"]
    assert client.post(f"/rooms/{focus}/join", headers=member_headers).status_code == 200
