"""HTTP API over a file-backed tracking store."""

import json

import pytest
from fastapi.testclient import TestClient

from ticket_notifier.config import Settings
from ticket_notifier.main import create_app

TICKETS = [
    {
        "id": "1",
        "updated_at": "2024-01-15T14:05:00Z",
        "sla_applied": {"sla_name": "First Response Time", "sla_status": "active"},
        "statistics": {"first_assignment_at": "2024-01-15T14:00:00Z"},
        "admin_assignee": {"id": "42", "name": "Jane Doe", "email": "jane@example.com"},
        "ticket_state": {"category": "in_progress", "internal_label": "In progress"},
    },
    {
        "id": "2",
        "updated_at": "2024-01-15T15:00:00Z",
        "sla_applied": {"sla_name": "Time to Close", "sla_status": "missed"},
        "statistics": {"first_assignment_at": "2024-01-14T15:00:00Z"},
        "admin_assignee": {"id": "43", "name": "Bo Lee"},
    },
    {
        "id": "3",
        "updated_at": "2024-01-15T14:03:00Z",
        "sla_applied": {"sla_name": "First Response Time", "sla_status": "hit"},
        "statistics": {"first_assignment_at": "2024-01-15T14:00:00Z"},
        "tags": {"tags": [{"name": "unwarranted sla"}]},
    },
    {"subject": "no id at all"},
]


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        sla_state_file=tmp_path / "sla-state.json",
        assignment_state_file=tmp_path / "assignment-tracking.json",
        sla_config_path=tmp_path / "missing.yaml",
        business_hours_enabled=False,
        slack_bot_token=None,
        sla_alert_channel=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def client(tmp_path):
    with TestClient(create_app(make_settings(tmp_path))) as test_client:
        yield test_client


@pytest.fixture
def loaded_client(client):
    response = client.post("/sla/tickets", json={"tickets": TICKETS})
    assert response.status_code == 200
    return client


def test_ingest_counts_invalid_snapshots_as_failed(client):
    body = client.post("/sla/tickets", json={"tickets": TICKETS}).json()

    assert body["processed"] == 3
    assert body["tracked"] == 3
    assert body["failed"] == 1
    assert body["alerts_sent"] == 0
    assert body["errors"] == ["Ticket #3: invalid snapshot (1 errors)"]
    assert [r["ticket_id"] for r in body["results"]] == ["1", "2", "3"]


def test_redelivered_notification_is_dropped(client):
    headers = {"X-Notification-Id": "notif_1"}
    first = client.post("/sla/tickets", json={"tickets": TICKETS[:1]}, headers=headers).json()
    again = client.post("/sla/tickets", json={"tickets": TICKETS[:1]}, headers=headers).json()
    other = client.post("/sla/tickets", json={"tickets": TICKETS[:1]}, headers={"X-Notification-Id": "notif_2"}).json()

    assert first["processed"] == 1
    assert first["duplicate"] is False
    assert again["processed"] == 0
    assert again["duplicate"] is True
    assert again["results"] == []
    assert other["processed"] == 1


def test_notification_id_from_body(client):
    payload = {"id": "notif_9", "tickets": TICKETS[:1]}
    client.post("/sla/tickets", json=payload)

    assert client.post("/sla/tickets", json=payload).json()["duplicate"] is True


def test_ingest_without_notification_id_is_never_deduplicated(client):
    client.post("/sla/tickets", json={"tickets": TICKETS[:1]})

    body = client.post("/sla/tickets", json={"tickets": TICKETS[:1]}).json()
    assert body["processed"] == 1
    assert body["duplicate"] is False


def test_ingest_persists_to_state_file(loaded_client, tmp_path):
    rows = json.loads((tmp_path / "sla-state.json").read_text())
    assert sorted(rows) == ["1", "2", "3"]


def test_list_tickets_sorted_by_deadline(loaded_client):
    body = loaded_client.get("/sla/tickets").json()

    assert body["count"] == 3
    assert [t["ticket_id"] for t in body["tickets"]] == ["1", "3", "2"]

    by_name = loaded_client.get("/sla/tickets", params={"sort": "sla_name"}).json()
    assert [t["ticket_id"] for t in by_name["tickets"]] == ["1", "3", "2"]

    by_assignee = loaded_client.get("/sla/tickets", params={"sort": "assignee"}).json()
    assert [t["ticket_id"] for t in by_assignee["tickets"]] == ["2", "1", "3"]


def test_list_tickets_filters(loaded_client):
    missed = loaded_client.get("/sla/tickets", params={"status": "missed"}).json()
    assert [t["ticket_id"] for t in missed["tickets"]] == ["2"]

    frt = loaded_client.get("/sla/tickets", params={"sla_name": "first"}).json()
    assert {t["ticket_id"] for t in frt["tickets"]} == {"1", "3"}

    warranted = loaded_client.get("/sla/tickets", params={"unwarranted": "false"}).json()
    assert {t["ticket_id"] for t in warranted["tickets"]} == {"1", "2"}

    by_date = loaded_client.get("/sla/tickets", params={"date_from": "2024-01-15", "date_to": "2024-01-15"}).json()
    assert {t["ticket_id"] for t in by_date["tickets"]} == {"1", "3"}


@pytest.mark.parametrize("params", [
    {"sort": "priority"},
    {"status": "pending"},
    {"date_type": "closed"},
    {"date_from": "2024-02-01", "date_to": "2024-01-01"},
])
def test_invalid_listing_query(client, params):
    assert client.get("/sla/tickets", params=params).status_code == 422


def test_get_ticket(loaded_client):
    body = loaded_client.get("/sla/tickets/1").json()

    assert body["sla_bucket"] == "FRT"
    assert body["sla_duration"] == 300
    assert body["deadline"].startswith("2024-01-15T14:05:00")
    assert body["assignee_name"] == "Jane Doe"
    assert body["is_overdue"] is True
    assert body["ticket_link"].endswith("/1")


def test_ticket_link_uses_app_settings(tmp_path):
    settings = make_settings(tmp_path, ticket_link_base_url="https://support.example.com/t/")
    with TestClient(create_app(settings)) as test_client:
        test_client.post("/sla/tickets", json={"tickets": TICKETS})

        single = test_client.get("/sla/tickets/1").json()
        listing = test_client.get("/sla/tickets").json()

    assert single["ticket_link"] == "https://support.example.com/t/1"
    assert {t["ticket_link"] for t in listing["tickets"]} == {
        "https://support.example.com/t/1",
        "https://support.example.com/t/2",
        "https://support.example.com/t/3",
    }


def test_unknown_ticket_is_404(client):
    response = client.get("/sla/tickets/999")

    assert response.status_code == 404
    assert "999" in response.json()["detail"]


def test_stats(loaded_client):
    body = loaded_client.get("/sla/stats").json()

    assert body["total_tracked"] == 3
    assert (body["active"], body["missed"], body["hit"]) == (1, 1, 1)
    assert body["unwarranted"] == 1
    assert body["hit_rate"] == 0.0
    assert body["alerting_enabled"] is False
    assert {row["key"] for row in body["by_sla_type"]} == {"FRT", "TTC"}


def test_business_hours(client):
    body = client.get("/sla/business-hours").json()

    assert body["is_business_hours"] is True
    assert body["calendar"]["enabled"] is False
    assert body["calendar"]["timezone"] == "America/New_York"


def test_reload(loaded_client):
    body = loaded_client.post("/sla/reload").json()
    assert body == {"sla_records": 3, "assignment_records": 3}


def test_health_and_root(loaded_client):
    health = loaded_client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["checks"]["tracking_store"] == "loaded (3 records)"
    assert health["checks"]["sla_scheduler"] == "running"
    assert health["checks"]["alerting"] == "disabled"

    root = loaded_client.get("/").json()
    assert root["modules"]["sla"]["prefix"] == "/sla"


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_dashboard_role_refuses_ingest_and_reads_shared_state(tmp_path):
    with TestClient(create_app(make_settings(tmp_path))) as owner:
        owner.post("/sla/tickets", json={"tickets": TICKETS[:2]})

    settings = make_settings(tmp_path, service_role="dashboard")
    with TestClient(create_app(settings)) as dashboard:
        response = dashboard.post("/sla/tickets", json={"tickets": TICKETS})
        assert response.status_code == 409

        body = dashboard.get("/sla/tickets").json()
        assert body["count"] == 2

        health = dashboard.get("/health").json()
        assert health["service_role"] == "dashboard"
