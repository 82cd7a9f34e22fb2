"""
Tests for the undo/redo endpoints.
"""

from decimal import Decimal


def create_user(client, username="ali", balance="1000"):
    return client.post("/users", json={
        "username": username,
        "email": f"{username}@example.com",
        "balance": balance,
    }).json()


def balance_of(client, user):
    return Decimal(client.get(f"/users/{user['id']}/balance").json()["balance"])


def test_empty_history(client):
    user = create_user(client)
    data = client.get("/history", headers={"X-User-Id": str(user["id"])}).json()
    assert data == {"actions": [], "cursor": 0, "can_undo": False, "can_redo": False}


def test_undo_and_redo_restore_balance(client):
    user = create_user(client)
    headers = {"X-User-Id": str(user["id"])}
    client.post("/entries/submit", json={"text": "12 34 first 100"}, headers=headers)
    assert balance_of(client, user) == Decimal("800")

    undone = client.post("/history/undo", headers=headers)
    assert undone.status_code == 200
    assert undone.json()["can_redo"] is True
    assert balance_of(client, user) == Decimal("1000")
    assert client.get("/entries", headers=headers).json() == []

    redone = client.post("/history/redo", headers=headers)
    assert redone.status_code == 200
    assert balance_of(client, user) == Decimal("800")
    assert len(client.get("/entries", headers=headers).json()) == 2


def test_history_lists_actions(client):
    user = create_user(client)
    headers = {"X-User-Id": str(user["id"])}
    client.post("/entries/submit", json={"text": "12 first 100"}, headers=headers)
    data = client.get("/history", headers=headers).json()
    assert len(data["actions"]) == 1
    assert data["actions"][0]["type"] == "add"
    assert data["actions"][0]["affected_numbers"] == ["12"]


def test_history_is_per_user(client):
    user = create_user(client)
    other = create_user(client, "sam")
    client.post(
        "/entries/submit",
        json={"text": "12 first 100"},
        headers={"X-User-Id": str(user["id"])},
    )
    data = client.get("/history", headers={"X-User-Id": str(other["id"])}).json()
    assert data["actions"] == []


def test_undo_with_empty_history_returns_400(client):
    user = create_user(client)
    response = client.post("/history/undo", headers={"X-User-Id": str(user["id"])})
    assert response.status_code == 400


def test_undo_of_deleted_target_returns_404(client):
    user = create_user(client)
    headers = {"X-User-Id": str(user["id"])}
    entries = client.post(
        "/entries/submit", json={"text": "12 34 first 100"}, headers=headers,
    ).json()["entries"]
    client.post(
        "/entries/bulk-delete", json={"entry_ids": [entries[0]["id"]]}, headers=headers,
    )

    response = client.post("/history/undo", headers=headers)

    assert response.status_code == 404
    assert client.get("/history", headers=headers).json()["cursor"] == 1
