from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient

from app.logging import JsonLogFormatter

from conftest import ActorSetter, LeadFactory, World, bearer


def test_logs_include_correlation_id_for_http(
    client: tuple[TestClient, ActorSetter],
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, _ = client
    caplog.set_level(logging.INFO)

    response = test_client.get("/api/leads/4040", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_bulk_log_carries_outcome_counts(
    client: tuple[TestClient, ActorSetter],
    world: World,
    make_lead: LeadFactory,
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, _ = client
    caplog.set_level(logging.INFO)
    lead = make_lead()

    response = test_client.post(
        "/api/leads/bulk/assign",
        json={"lead_ids": [lead.id, 555], "assignee_id": world.manager},
        headers={"X-Correlation-Id": "bulk-log-1"},
    )
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "app.crm.bulk"]
    assert any(
        record.getMessage() == "lead_bulk_assign"
        and getattr(record, "updated", None) == 1
        and getattr(record, "missing", None) == 1
        and getattr(record, "requested", None) == 2
        and getattr(record, "correlation_id", None) == "bulk-log-1"
        for record in records
    )


def test_actor_id_is_bound_after_authentication(
    api_client: TestClient,
    world: World,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = api_client.get("/api/dashboard/summary", headers=bearer(world.manager, "manager"))
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "app.reporting.dashboard"]
    assert any(
        record.getMessage() == "dashboard_built"
        and getattr(record, "actor_id", None) == world.manager
        and getattr(record, "actor_role", None) == "manager"
        for record in records
    )


def test_json_formatter_emits_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "app.crm.bulk",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "lead_bulk_delete",
            "deleted": 3,
            "password": "should-not-appear",
            "correlation_id": "fmt-1",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "lead_bulk_delete"
    assert payload["logger"] == "app.crm.bulk"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"deleted": 3}
