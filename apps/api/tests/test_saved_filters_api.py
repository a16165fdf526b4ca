from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import ActorSetter, World


def test_saved_filters_are_private_unless_shared(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, set_actor = client
    set_actor(world.rep)

    private = test_client.post("/api/filters", json={"name": "Hot leads", "definition": {"status_id": world.status_new}})
    shared = test_client.post("/api/filters", json={"name": "Team view", "definition": {"scope": "mine"}, "is_shared": True})
    assert private.status_code == 201
    assert private.json()["definition"] == {"status_id": world.status_new}
    assert shared.status_code == 201

    set_actor(world.teammate)
    visible = test_client.get("/api/filters").json()
    assert [row["name"] for row in visible] == ["Team view"]
    assert test_client.get(f"/api/filters/{private.json()['id']}").status_code == 403
    assert test_client.get(f"/api/filters/{shared.json()['id']}").status_code == 200


def test_only_owner_changes_filter(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, set_actor = client
    set_actor(world.manager)
    created = test_client.post("/api/filters", json={"name": "Mine", "is_shared": True}).json()

    set_actor(world.rep)
    assert test_client.patch(f"/api/filters/{created['id']}", json={"name": "Stolen"}).status_code == 403
    assert test_client.delete(f"/api/filters/{created['id']}").status_code == 403

    set_actor(world.manager)
    renamed = test_client.patch(f"/api/filters/{created['id']}", json={"name": "Pipeline", "is_shared": False})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Pipeline"
    assert renamed.json()["is_shared"] is False
    assert test_client.delete(f"/api/filters/{created['id']}").status_code == 204
    assert test_client.get(f"/api/filters/{created['id']}").status_code == 404


def test_filter_names_are_unique_per_user(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, set_actor = client
    set_actor(world.rep)
    assert test_client.post("/api/filters", json={"name": "Follow ups"}).status_code == 201

    duplicate = test_client.post("/api/filters", json={"name": " Follow ups "})
    set_actor(world.teammate)
    other_user = test_client.post("/api/filters", json={"name": "Follow ups"})

    assert duplicate.status_code == 409
    assert duplicate.json()["details"] == {"name": "Follow ups"}
    assert other_user.status_code == 201
