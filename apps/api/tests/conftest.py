from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Lead, LeadSource, LeadStatus
from app.crm.seed import seed_reference_data
from app.identity.models import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP, Role, Team, TeamManager, TeamMember, User
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.ledger.models import LeadAssignment
from app.platform.security.context import AuthContext
from app.platform.security.dependencies import get_auth_context


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("PASSWORD_HASH_ITERATIONS", "1000")
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@dataclass
class World:
    admin: int
    manager: int
    other_manager: int
    rep: int
    teammate: int
    outsider: int
    loner: int
    alpha_team: int
    beta_team: int
    status_new: int
    status_contacted: int
    status_won: int
    source_web: int
    roles: dict[int, str]


def _user(session: Session, roles: dict[str, Role], full_name: str, email: str, role: str) -> User:
    user = User(full_name=full_name, email=email, password_hash="unusable", role=roles[role], is_active=True)
    session.add(user)
    session.flush()
    return user


@pytest.fixture()
def world(db_session: Session) -> World:
    """Admin, two managers with one team each, three teamed reps and one unteamed rep."""

    seed_reference_data(db_session)
    roles = {role.value: role for role in db_session.scalars(select(Role)).all()}

    admin = _user(db_session, roles, "Ada Admin", "admin@leadhive.test", ROLE_ADMIN)
    manager = _user(db_session, roles, "Mona Manager", "mona@leadhive.test", ROLE_MANAGER)
    other_manager = _user(db_session, roles, "Otto Manager", "otto@leadhive.test", ROLE_MANAGER)
    rep = _user(db_session, roles, "Rita Rep", "rita@leadhive.test", ROLE_SALES_REP)
    teammate = _user(db_session, roles, "Tom Rep", "tom@leadhive.test", ROLE_SALES_REP)
    outsider = _user(db_session, roles, "Olga Rep", "olga@leadhive.test", ROLE_SALES_REP)
    loner = _user(db_session, roles, "Lars Rep", "lars@leadhive.test", ROLE_SALES_REP)

    alpha = Team(name="Alpha")
    alpha.managers = [TeamManager(manager_id=manager.id)]
    alpha.members = [TeamMember(user_id=rep.id), TeamMember(user_id=teammate.id)]
    beta = Team(name="Beta")
    beta.managers = [TeamManager(manager_id=other_manager.id)]
    beta.members = [TeamMember(user_id=outsider.id)]
    db_session.add_all([alpha, beta])
    db_session.commit()

    statuses = {row.value: row.id for row in db_session.scalars(select(LeadStatus)).all()}
    sources = {row.value: row.id for row in db_session.scalars(select(LeadSource)).all()}
    users = [admin, manager, other_manager, rep, teammate, outsider, loner]
    return World(
        admin=admin.id,
        manager=manager.id,
        other_manager=other_manager.id,
        rep=rep.id,
        teammate=teammate.id,
        outsider=outsider.id,
        loner=loner.id,
        alpha_team=alpha.id,
        beta_team=beta.id,
        status_new=statuses["new"],
        status_contacted=statuses["contacted"],
        status_won=statuses["won"],
        source_web=sources["website"],
        roles={user.id: user.role_value for user in users},
    )


LeadFactory = Callable[..., Lead]


@pytest.fixture()
def make_lead(db_session: Session, world: World) -> LeadFactory:
    """Insert a lead directly, with one ledger row per owner in ``owners`` (oldest first)."""

    counter = {"n": 0}

    def factory(
        *owners: int,
        status_id: int | None = None,
        source_id: int | None = None,
        first_name: str | None = None,
        company: str | None = None,
        phone: str | None = None,
        created_at: datetime | None = None,
        value: Decimal = Decimal("0"),
    ) -> Lead:
        counter["n"] += 1
        stamp = created_at or datetime.now(timezone.utc)
        lead = Lead(
            first_name=first_name or f"Lead{counter['n']}",
            last_name="Test",
            company=company,
            phone=phone,
            email=f"lead{counter['n']}@example.com",
            status_id=status_id or world.status_new,
            source_id=source_id,
            value_decimal=value,
            created_by=owners[0] if owners else world.admin,
            created_at=stamp,
            updated_at=stamp,
        )
        db_session.add(lead)
        db_session.flush()
        for owner_id in owners:
            db_session.add(LeadAssignment(lead_id=lead.id, assignee_id=owner_id, assigned_by=world.admin, assigned_at=stamp))
            db_session.flush()
        db_session.commit()
        return lead

    return factory


ActorSetter = Callable[[int], None]


@pytest.fixture()
def client(db_session: Session, world: World) -> Generator[tuple[TestClient, ActorSetter], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": world.admin}

    def override_get_auth_context(request: Request) -> AuthContext:
        user_id = state["current"]
        return AuthContext(
            user_id=user_id,
            role=world.roles[user_id],
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def set_actor(user_id: int) -> None:
        state["current"] = user_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_context] = override_get_auth_context
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def api_client(db_session: Session) -> Generator[TestClient, None, None]:
    """Client that authenticates through real bearer tokens."""

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def bearer(user_id: int, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
