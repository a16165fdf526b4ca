from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app import audit, events
from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.service import assignment_ledger

from conftest import ActorSetter, LeadFactory, World


def test_latest_assignee_is_highest_ledger_row(db_session: Session, world: World, make_lead: LeadFactory) -> None:
    lead = make_lead(world.rep, world.teammate, world.rep)

    assert assignment_ledger.latest_assignee_of(db_session, lead.id) == world.rep
    assert assignment_ledger.latest_assignee_map(db_session, [lead.id]) == {lead.id: world.rep}


def test_latest_assignee_map_skips_leads_without_rows(db_session: Session, world: World, make_lead: LeadFactory) -> None:
    owned = make_lead(world.rep)
    orphan = make_lead()

    mapping = assignment_ledger.latest_assignee_map(db_session, [owned.id, orphan.id])

    assert mapping == {owned.id: world.rep}
    assert assignment_ledger.latest_assignee_of(db_session, orphan.id) is None


def test_append_many_inserts_in_chunks(db_session: Session, world: World, make_lead: LeadFactory) -> None:
    leads = [make_lead(world.rep) for _ in range(5)]

    created = assignment_ledger.append_many(
        db_session,
        [lead.id for lead in leads],
        assignee_id=world.teammate,
        assigned_by=world.manager,
        chunk_size=2,
    )
    db_session.commit()

    assert created == 5
    assert assignment_ledger.latest_assignee_map(db_session, [lead.id for lead in leads]) == {
        lead.id: world.teammate for lead in leads
    }


def test_admin_assign_appends_row_and_history_is_newest_first(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    lead = make_lead(world.rep)
    set_actor(world.admin)

    response = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.loner})
    assert response.status_code == 201
    body = response.json()
    assert body["assignee_id"] == world.loner
    assert body["assigned_by"] == world.admin
    assert body["assignee"]["email"] == "lars@leadhive.test"

    history = test_client.get(f"/api/leads/{lead.id}/assignments")
    assert history.status_code == 200
    assert [row["assignee_id"] for row in history.json()] == [world.loner, world.rep]

    count = db_session.scalar(select(func.count(LeadAssignment.id)).where(LeadAssignment.lead_id == lead.id))
    assert count == 2
    assert assignment_ledger.latest_assignee_of(db_session, lead.id) == world.loner

    assert any(entry["action"] == "assign" for entry in audit.entries_for("crm.lead", lead.id))
    assigned = [item for item in events.published_events if item["event_type"] == "crm.lead.assigned"]
    assert assigned[-1]["payload"]["previous_assignee_id"] == world.rep


def test_assign_requires_assignee(client: tuple[TestClient, ActorSetter], world: World, make_lead: LeadFactory) -> None:
    test_client, _ = client
    lead = make_lead(world.rep)

    response = test_client.post(f"/api/leads/{lead.id}/assign", json={})

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert response.json()["details"] == {"field": "assignee_id"}


def test_assign_unknown_assignee_is_not_found(
    client: tuple[TestClient, ActorSetter],
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, _ = client
    lead = make_lead(world.rep)

    response = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": 9999})

    assert response.status_code == 404
    assert response.json()["details"] == {"assignee_id": 9999}


def test_sales_rep_cannot_assign(client: tuple[TestClient, ActorSetter], world: World, make_lead: LeadFactory) -> None:
    test_client, set_actor = client
    lead = make_lead(world.rep)
    set_actor(world.rep)

    response = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.teammate})

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"
    assert audit.entries_for("crm.lead_assignment")[-1]["action"] == "assign.denied"


def test_manager_assigns_only_within_team(
    client: tuple[TestClient, ActorSetter],
    db_session: Session,
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    lead = make_lead(world.rep)
    set_actor(world.manager)

    allowed = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.teammate})
    assert allowed.status_code == 201

    outside = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.outsider})
    assert outside.status_code == 403

    to_manager = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.other_manager})
    assert to_manager.status_code == 403

    assert assignment_ledger.latest_assignee_of(db_session, lead.id) == world.teammate


def test_manager_cannot_see_other_team_lead(
    client: tuple[TestClient, ActorSetter],
    world: World,
    make_lead: LeadFactory,
) -> None:
    test_client, set_actor = client
    lead = make_lead(world.outsider)
    set_actor(world.manager)

    history = test_client.get(f"/api/leads/{lead.id}/assignments")
    assign = test_client.post(f"/api/leads/{lead.id}/assign", json={"assignee_id": world.rep})

    assert history.status_code == 404
    assert assign.status_code == 404
