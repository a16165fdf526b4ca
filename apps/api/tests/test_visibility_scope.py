from __future__ import annotations

import pytest
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError
from app.identity.models import TeamMember, User
from app.platform.security.context import AuthContext
from app.platform.security.visibility import (
    AdminScope,
    ManagerScope,
    SalesRepScope,
    can_see_owner,
    resolve_scope,
    team_closure,
)

from conftest import World


def _ctx(world: World, user_id: int) -> AuthContext:
    return AuthContext(user_id=user_id, role=world.roles[user_id])


def test_resolve_scope_picks_variant_per_role(db_session: Session, world: World) -> None:
    assert isinstance(resolve_scope(db_session, _ctx(world, world.admin)), AdminScope)
    assert isinstance(resolve_scope(db_session, _ctx(world, world.manager)), ManagerScope)
    assert isinstance(resolve_scope(db_session, _ctx(world, world.rep)), SalesRepScope)


def test_unknown_role_is_forbidden(db_session: Session) -> None:
    with pytest.raises(ForbiddenError):
        resolve_scope(db_session, AuthContext(user_id=1, role="auditor"))


def test_manager_scope_is_team_closure_plus_self(db_session: Session, world: World) -> None:
    scope = resolve_scope(db_session, _ctx(world, world.manager))

    assert scope.visible_user_ids() == frozenset({world.manager, world.rep, world.teammate})
    assert can_see_owner(scope, world.rep)
    assert not can_see_owner(scope, world.outsider)
    assert not can_see_owner(scope, None)


def test_admin_sees_everything_and_sales_rep_only_self(db_session: Session, world: World) -> None:
    admin = resolve_scope(db_session, _ctx(world, world.admin))
    rep = resolve_scope(db_session, _ctx(world, world.rep))

    assert admin.visible_user_ids() is None
    assert can_see_owner(admin, None)
    assert rep.visible_user_ids() == frozenset({world.rep})
    assert not can_see_owner(rep, world.teammate)


def test_membership_removal_takes_effect_on_next_resolution(db_session: Session, world: World) -> None:
    before = resolve_scope(db_session, _ctx(world, world.manager))
    assert world.rep in before.visible_user_ids()

    db_session.execute(delete(TeamMember).where(TeamMember.user_id == world.rep))
    db_session.commit()

    after = resolve_scope(db_session, _ctx(world, world.manager))
    assert world.rep not in after.visible_user_ids()
    assert team_closure(db_session, world.manager).member_ids == frozenset({world.teammate})


def test_manager_without_teams_sees_only_self(db_session: Session, world: World) -> None:
    closure = team_closure(db_session, world.rep)

    assert closure.team_ids == frozenset()
    assert ManagerScope(actor_id=world.rep, closure=closure).visible_user_ids() == frozenset({world.rep})


def test_bulk_assignee_matrix(db_session: Session, world: World) -> None:
    admin = resolve_scope(db_session, _ctx(world, world.admin))
    manager = resolve_scope(db_session, _ctx(world, world.manager))
    rep = resolve_scope(db_session, _ctx(world, world.rep))
    users = {user.id: user for user in db_session.scalars(select(User)).all()}

    admin.check_bulk_assignee(users[world.manager])
    with pytest.raises(ForbiddenError, match="Admin can only bulk-assign to managers."):
        admin.check_bulk_assignee(users[world.rep])

    manager.check_bulk_assignee(users[world.teammate])
    with pytest.raises(ForbiddenError, match="Assignee is not in your managed teams."):
        manager.check_bulk_assignee(users[world.outsider])
    with pytest.raises(ForbiddenError, match="Manager can only bulk-assign to sales reps."):
        manager.check_bulk_assignee(users[world.other_manager])

    for target in (world.manager, world.rep, world.teammate):
        with pytest.raises(ForbiddenError):
            rep.check_bulk_assignee(users[target])


def test_eligible_assignees_follow_role(db_session: Session, world: World) -> None:
    admin = resolve_scope(db_session, _ctx(world, world.admin))
    manager = resolve_scope(db_session, _ctx(world, world.manager))
    rep = resolve_scope(db_session, _ctx(world, world.rep))

    assert len(db_session.scalars(admin.eligible_assignees()).all()) == 7
    assert {user.id for user in db_session.scalars(manager.eligible_assignees()).all()} == {world.rep, world.teammate}
    assert db_session.scalars(rep.eligible_assignees()).all() == []
