from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.middleware.rate_limit import reset_rate_limiter

from conftest import ActorSetter, World, bearer


@pytest.fixture(autouse=True)
def configure_rate_limiter_env(clear_stubs: None, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


def _create(test_client: TestClient, world: World, index: int, **kwargs: object):
    return test_client.post(
        "/api/leads",
        json={"first_name": f"Rate {index}", "status_id": world.status_new},
        **kwargs,
    )


def test_mutating_lead_endpoints_are_rate_limited(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, _ = client

    responses = [_create(test_client, world, index, headers={"X-Correlation-Id": "corr-rate-1"}) for index in range(5)]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = [response for response in responses if response.status_code == 429]
    assert len(limited) == 2
    body = limited[0].json()
    assert body["code"] == "rate_limited"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] == "corr-rate-1"
    assert limited[0].headers.get("Retry-After") is not None
    assert limited[0].headers.get("x-correlation-id") == "corr-rate-1"


def test_get_endpoints_are_not_rate_limited(client: tuple[TestClient, ActorSetter], world: World) -> None:
    test_client, _ = client
    assert _create(test_client, world, 0).status_code == 201

    responses = [test_client.get("/api/leads") for _ in range(10)]

    assert all(response.status_code != 429 for response in responses)


def test_buckets_are_per_user_and_route_group(api_client: TestClient, world: World) -> None:
    manager_headers = bearer(world.manager, "manager")
    rep_headers = bearer(world.rep, "sales_rep")

    manager_calls = [_create(api_client, world, index, headers=manager_headers) for index in range(4)]
    rep_call = _create(api_client, world, 9, headers=rep_headers)
    filter_call = api_client.post("/api/filters", json={"name": "Separate group"}, headers=manager_headers)

    assert manager_calls[-1].status_code == 429
    assert rep_call.status_code == 201
    assert filter_call.status_code == 201


def test_bulk_operations_have_their_own_budget(
    client: tuple[TestClient, ActorSetter],
    world: World,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_BULK_PER_MINUTE", "1")
    get_settings.cache_clear()
    test_client, _ = client
    payload = {"lead_ids": [1], "status_id": world.status_won}

    first = test_client.post("/api/leads/bulk/status", json=payload)
    second = test_client.post("/api/leads/bulk/status", json=payload)
    single = _create(test_client, world, 0)

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["details"] == {"group": "leads.bulk", "limit_per_minute": 1}
    assert single.status_code == 201


def test_login_is_exempt(api_client: TestClient, world: World) -> None:
    responses = [
        api_client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"}) for _ in range(5)
    ]

    assert all(response.status_code == 401 for response in responses)
