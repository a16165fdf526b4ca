from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app import audit, events
from app.core.config import get_settings
from app.crm.bulk import bulk_lead_service
from app.crm.models import Lead
from app.crm.schemas import BulkAssignRequest, BulkDeleteRequest
from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.service import assignment_ledger
from app.platform.security.context import AuthContext

from conftest import ActorSetter, LeadFactory, World


def _ledger_rows(session: Session) -> int:
    return int(session.scalar(select(func.count(LeadAssignment.id))) or 0)


def test_admin_bulk_assign_reports_partitions(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    first = make_lead(world.admin)
    already = make_lead(world.manager)
    third = make_lead()
    set_actor(world.admin)

    response = test_client.post(
        "/api/leads/bulk/assign",
        json={"lead_ids": [first.id, already.id, third.id], "assignee_id": world.manager, "overwrite": False},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_requested"] == 3
    assert body["updated"] == 2
    assert body["updated_ids"] == [first.id, third.id]
    assert body["skipped"] == [
        {"lead_id": already.id, "reason": "already_assigned_to_target", "current_assignee_id": world.manager}
    ]
    assert body["missing"] == []
    assert assignment_ledger.latest_assignee_map(db_session, [first.id, already.id, third.id]) == {
        first.id: world.manager,
        already.id: world.manager,
        third.id: world.manager,
    }
    assert audit.entries_for("crm.lead")[-1]["action"] == "bulk_assign"
    assigned = [item for item in events.published_events if item["event_type"] == "crm.lead.assigned"]
    assert assigned[-1]["payload"]["lead_ids"] == [first.id, third.id]


def test_bulk_assign_is_idempotent_without_overwrite(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    lead_ids = [make_lead(world.rep).id, make_lead(world.manager).id]
    set_actor(world.manager)
    payload = {"lead_ids": lead_ids, "assignee_id": world.teammate, "overwrite": False}

    first = test_client.post("/api/leads/bulk/assign", json=payload)
    rows_after_first = _ledger_rows(db_session)
    second = test_client.post("/api/leads/bulk/assign", json=payload)

    assert first.status_code == 200
    # The rep's lead is owned by someone other than the actor, so only the manager's own lead moves.
    assert first.json()["updated_ids"] == [lead_ids[1]]
    assert first.json()["skipped"][0]["reason"] == "already_assigned"

    overwrite = test_client.post("/api/leads/bulk/assign", json=payload | {"overwrite": True})
    assert overwrite.json()["updated_ids"] == lead_ids
    assert overwrite.json()["skipped"] == []
    rows_after_overwrite = _ledger_rows(db_session)

    repeat = test_client.post("/api/leads/bulk/assign", json=payload)
    assert second.status_code == 200
    assert rows_after_first == 3
    assert repeat.json()["updated"] == 0
    assert [skip["reason"] for skip in repeat.json()["skipped"]] == ["already_assigned_to_target"] * 2
    assert _ledger_rows(db_session) == rows_after_overwrite


def test_bulk_assign_reports_missing_and_out_of_scope_ids(
    client: tuple[TestClient, ActorSetter],
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    visible = make_lead(world.rep)
    foreign = make_lead(world.outsider)
    set_actor(world.manager)

    response = test_client.post(
        "/api/leads/bulk/assign",
        json={"lead_ids": [visible.id, foreign.id, 9999, visible.id], "assignee_id": world.teammate, "overwrite": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_requested"] == 3
    assert body["updated_ids"] == [visible.id]
    assert body["missing"] == [foreign.id, 9999]


def test_bulk_assign_with_overwrite_restamps_leads_already_held_by_target(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    held = make_lead(world.manager)
    set_actor(world.admin)
    rows_before = _ledger_rows(db_session)

    response = test_client.post(
        "/api/leads/bulk/assign",
        json={"lead_ids": [held.id], "assignee_id": world.manager, "overwrite": True},
    )

    assert response.status_code == 200
    assert response.json()["updated_ids"] == [held.id]
    assert response.json()["skipped"] == []
    assert _ledger_rows(db_session) == rows_before + 1
    latest = assignment_ledger.latest_assignment_map(db_session, [held.id])[held.id]
    assert latest.assignee_id == world.manager
    assert latest.assigned_by == world.admin


def _raise_store_failure(*args: object, **kwargs: object) -> None:
    raise RuntimeError("store unavailable")


def test_bulk_assign_failure_after_append_rolls_back_every_chunk(
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BULK_CHUNK_SIZE", "1")
    get_settings.cache_clear()
    lead_ids = [make_lead(world.rep).id for _ in range(3)]
    rows_before = _ledger_rows(db_session)
    monkeypatch.setattr(events, "publish", _raise_store_failure)
    ctx = AuthContext(user_id=world.admin, role=world.roles[world.admin])

    with pytest.raises(RuntimeError, match="store unavailable"):
        bulk_lead_service.bulk_assign(
            db_session,
            ctx,
            BulkAssignRequest(lead_ids=lead_ids, assignee_id=world.manager, overwrite=True),
        )

    assert _ledger_rows(db_session) == rows_before
    assert set(assignment_ledger.latest_assignee_map(db_session, lead_ids).values()) == {world.rep}


def test_bulk_delete_failure_after_chunks_rolls_back(
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BULK_CHUNK_SIZE", "1")
    get_settings.cache_clear()
    lead_ids = [make_lead(world.rep).id for _ in range(3)]
    rows_before = _ledger_rows(db_session)
    monkeypatch.setattr(audit, "record", _raise_store_failure)
    ctx = AuthContext(user_id=world.admin, role=world.roles[world.admin])

    with pytest.raises(RuntimeError, match="store unavailable"):
        bulk_lead_service.bulk_delete(db_session, ctx, BulkDeleteRequest(lead_ids=lead_ids))

    assert db_session.scalar(select(func.count(Lead.id))) == 3
    assert _ledger_rows(db_session) == rows_before


@pytest.mark.parametrize(
    ("actor", "assignee", "expected"),
    [
        ("admin", "rep", 403),
        ("admin", "manager", 200),
        ("manager", "teammate", 200),
        ("manager", "outsider", 403),
        ("manager", "other_manager", 403),
        ("rep", "teammate", 403),
        ("rep", "rep", 403),
        ("rep", "manager", 403),
    ],
)
def test_bulk_assign_role_matrix(
    client: tuple[TestClient, ActorSetter],
    world: World,
    make_lead: LeadFactory,
    actor: str,
    assignee: str,
    expected: int,
) -> None:
    test_client, set_actor = client
    lead = make_lead(world.rep)
    set_actor(getattr(world, actor))

    response = test_client.post(
        "/api/leads/bulk/assign",
        json={"lead_ids": [lead.id], "assignee_id": getattr(world, assignee), "overwrite": True},
    )

    assert response.status_code == expected
    if expected == 403:
        assert response.json()["code"] == "forbidden"


def test_bulk_assign_validates_input(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, _ = client

    empty = test_client.post("/api/leads/bulk/assign", json={"lead_ids": [], "assignee_id": world.manager})
    no_assignee = test_client.post("/api/leads/bulk/assign", json={"lead_ids": [1]})
    unknown = test_client.post("/api/leads/bulk/assign", json={"lead_ids": [1], "assignee_id": 9999})

    assert empty.status_code == 422
    assert empty.json()["details"] == {"field": "lead_ids"}
    assert no_assignee.status_code == 422
    assert unknown.status_code == 404


def test_bulk_assign_chunks_large_batches(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BULK_CHUNK_SIZE", "2")
    get_settings.cache_clear()
    test_client, _ = client
    lead_ids = [make_lead().id for _ in range(5)]

    response = test_client.post("/api/leads/bulk/assign", json={"lead_ids": lead_ids, "assignee_id": world.manager})

    assert response.json()["updated"] == 5
    assert _ledger_rows(db_session) == 5


def test_bulk_delete_is_scoped_and_forbidden_for_reps(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    mine = make_lead(world.rep, world.teammate)
    foreign = make_lead(world.outsider)
    mine_id, foreign_id = mine.id, foreign.id

    set_actor(world.rep)
    denied = test_client.post("/api/leads/bulk/delete", json={"lead_ids": [mine_id]})
    assert denied.status_code == 403

    set_actor(world.manager)
    response = test_client.post("/api/leads/bulk/delete", json={"lead_ids": [mine_id, foreign_id, 777]})

    assert response.status_code == 200
    assert response.json() == {"requested": 3, "deleted": 1, "missing": [foreign_id, 777]}
    assert db_session.scalar(select(func.count(Lead.id))) == 1
    assert db_session.scalar(select(func.count(LeadAssignment.id)).where(LeadAssignment.lead_id == mine_id)) == 0


def test_bulk_status_and_source_updates(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    already_won = make_lead(world.rep, status_id=world.status_won)
    fresh = make_lead(world.teammate)
    foreign = make_lead(world.outsider)
    set_actor(world.manager)

    status_response = test_client.post(
        "/api/leads/bulk/status",
        json={"lead_ids": [already_won.id, fresh.id, foreign.id], "status_id": world.status_won},
    )
    source_response = test_client.post(
        "/api/leads/bulk/source",
        json={"lead_ids": [already_won.id, fresh.id], "source_id": world.source_web},
    )
    unknown_status = test_client.post("/api/leads/bulk/status", json={"lead_ids": [fresh.id], "status_id": 999})

    assert status_response.status_code == 200
    assert status_response.json() == {"requested": 3, "matched": 2, "updated": 1, "missing": [foreign.id]}
    assert source_response.json() == {"requested": 2, "matched": 2, "updated": 2, "missing": []}
    assert unknown_status.status_code == 422

    db_session.expire_all()
    refreshed = db_session.get(Lead, fresh.id)
    assert refreshed is not None
    assert refreshed.status_id == world.status_won
    assert refreshed.source_id == world.source_web
    assert refreshed.updated_by == world.manager

    set_actor(world.rep)
    rep_attempt = test_client.post("/api/leads/bulk/status", json={"lead_ids": [fresh.id], "status_id": world.status_new})
    assert rep_attempt.status_code == 403
