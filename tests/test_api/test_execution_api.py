"""
Tests for monthly execution API endpoints
"""
from decimal import Decimal

from app.utils.dates import month_label


def test_get_creates_draft(client):
    resp = client.get("/api/v1/execution/2025-03")

    assert resp.status_code == 200
    assert resp.json()["status"] == "draft"
    assert resp.json()["tracked_goal_ids"] == []


def test_invalid_month_label_is_400(client):
    assert client.get("/api/v1/execution/March").status_code == 400


def test_start_complete_and_history(client, make_goal):
    goal_id = make_goal()
    label = month_label()

    started = client.post(f"/api/v1/execution/{label}/start")
    assert started.status_code == 200
    assert started.json()["status"] == "executing"
    assert started.json()["tracked_goal_ids"] == [goal_id]
    assert client.get("/api/v1/execution/active").json()["month_label"] == label

    contributions = client.get(f"/api/v1/execution/{label}/contributions").json()
    assert list(contributions) == [goal_id]
    assert Decimal(contributions[goal_id]) == 0

    completed = client.post(f"/api/v1/execution/{label}/complete")
    assert completed.status_code == 200
    assert completed.json()["status"] == "closed"

    history = client.get("/api/v1/execution/history").json()
    assert [r["month_label"] for r in history] == [label]
    assert client.get("/api/v1/execution/active").json() is None


def test_undo_start_inside_window(client, make_goal):
    make_goal()
    label = month_label()
    client.post(f"/api/v1/execution/{label}/start")

    resp = client.post(f"/api/v1/execution/{label}/undo-start")

    assert resp.status_code == 200
    assert resp.json()["status"] == "draft"
    assert resp.json()["can_undo_until"] is None


def test_undo_completion_on_executing_month_is_409(client, make_goal):
    make_goal()
    label = month_label()
    client.post(f"/api/v1/execution/{label}/start")

    resp = client.post(f"/api/v1/execution/{label}/undo-complete")

    assert resp.status_code == 409


def test_complete_unknown_month_is_404(client):
    assert client.post("/api/v1/execution/2024-01/complete").status_code == 404
    assert client.post("/api/v1/execution/2024-01/undo-start").status_code == 404
