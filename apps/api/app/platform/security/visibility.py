from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from sqlalchemy import ColumnElement, Select, false, select, true
from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError
from app.identity.models import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP, Role, TeamManager, TeamMember, User
from app.metrics import observe_visibility_resolution
from app.platform.security.context import AuthContext


class VisibilityScope(Protocol):
    """What an actor may see and whom they may target.

    Scopes are resolved per call from the membership tables and never cached, so a
    membership change takes effect on the next resolution.
    """

    role: ClassVar[str]
    actor_id: int

    def visible_user_ids(self) -> frozenset[int] | None:
        """User ids whose leads are visible; None means unrestricted."""
        ...

    def lead_filter(self, assignee_column: ColumnElement[Any]) -> ColumnElement[bool]:
        """Predicate over a current-assignee column selecting visible leads."""
        ...

    def eligible_assignees(self) -> Select[tuple[User]]:
        """Users this actor may hand a single lead to."""
        ...

    def can_assign_to(self, user: User) -> bool:
        ...

    def check_bulk_assignee(self, user: User) -> None:
        """Raise ForbiddenError unless ``user`` is a valid bulk-assign target."""
        ...


def _owner_in(visible: frozenset[int] | None, owner_id: int | None) -> bool:
    if visible is None:
        return True
    return owner_id is not None and owner_id in visible


@dataclass(slots=True, frozen=True)
class TeamClosure:
    team_ids: frozenset[int]
    member_ids: frozenset[int]


@dataclass(slots=True)
class AdminScope:
    role: ClassVar[str] = ROLE_ADMIN
    actor_id: int

    def visible_user_ids(self) -> frozenset[int] | None:
        return None

    def lead_filter(self, assignee_column: ColumnElement[Any]) -> ColumnElement[bool]:
        return true()

    def eligible_assignees(self) -> Select[tuple[User]]:
        return select(User).where(User.is_active.is_(True)).order_by(User.full_name.asc(), User.id.asc())

    def can_assign_to(self, user: User) -> bool:
        return user.is_active

    def check_bulk_assignee(self, user: User) -> None:
        if user.role_value != ROLE_MANAGER:
            raise ForbiddenError("Admin can only bulk-assign to managers.", details={"assignee_id": user.id})
        if not user.is_active:
            raise ForbiddenError("Assignee is not active.", details={"assignee_id": user.id})


@dataclass(slots=True)
class ManagerScope:
    role: ClassVar[str] = ROLE_MANAGER
    actor_id: int
    closure: TeamClosure = field(default_factory=lambda: TeamClosure(frozenset(), frozenset()))

    def visible_user_ids(self) -> frozenset[int] | None:
        return self.closure.member_ids | {self.actor_id}

    def lead_filter(self, assignee_column: ColumnElement[Any]) -> ColumnElement[bool]:
        visible = self.visible_user_ids() or frozenset()
        return assignee_column.in_(sorted(visible))

    def eligible_assignees(self) -> Select[tuple[User]]:
        return (
            select(User)
            .join(Role, Role.id == User.role_id)
            .where(
                User.is_active.is_(True),
                Role.value == ROLE_SALES_REP,
                User.id.in_(sorted(self.closure.member_ids)),
            )
            .order_by(User.full_name.asc(), User.id.asc())
        )

    def can_assign_to(self, user: User) -> bool:
        return user.is_active and user.role_value == ROLE_SALES_REP and user.id in self.closure.member_ids

    def check_bulk_assignee(self, user: User) -> None:
        if user.role_value != ROLE_SALES_REP:
            raise ForbiddenError("Manager can only bulk-assign to sales reps.", details={"assignee_id": user.id})
        if user.id not in self.closure.member_ids:
            raise ForbiddenError("Assignee is not in your managed teams.", details={"assignee_id": user.id})
        if not user.is_active:
            raise ForbiddenError("Assignee is not active.", details={"assignee_id": user.id})


@dataclass(slots=True)
class SalesRepScope:
    role: ClassVar[str] = ROLE_SALES_REP
    actor_id: int

    def visible_user_ids(self) -> frozenset[int] | None:
        return frozenset({self.actor_id})

    def lead_filter(self, assignee_column: ColumnElement[Any]) -> ColumnElement[bool]:
        return assignee_column == self.actor_id

    def eligible_assignees(self) -> Select[tuple[User]]:
        return select(User).where(false())

    def can_assign_to(self, user: User) -> bool:
        return False

    def check_bulk_assignee(self, user: User) -> None:
        raise ForbiddenError("Sales reps cannot bulk-assign leads.")


def can_see_owner(scope: VisibilityScope, owner_id: int | None) -> bool:
    return _owner_in(scope.visible_user_ids(), owner_id)


def managed_team_ids(session: Session, manager_id: int) -> frozenset[int]:
    rows = session.scalars(select(TeamManager.team_id).where(TeamManager.manager_id == manager_id)).all()
    return frozenset(rows)


def team_closure(session: Session, manager_id: int) -> TeamClosure:
    team_ids = managed_team_ids(session, manager_id)
    if not team_ids:
        return TeamClosure(team_ids=frozenset(), member_ids=frozenset())
    member_ids = session.scalars(
        select(TeamMember.user_id).where(TeamMember.team_id.in_(sorted(team_ids))).distinct()
    ).all()
    return TeamClosure(team_ids=team_ids, member_ids=frozenset(member_ids))


def resolve_scope(session: Session, ctx: AuthContext) -> VisibilityScope:
    observe_visibility_resolution(ctx.role)
    if ctx.is_admin:
        return AdminScope(actor_id=ctx.user_id)
    if ctx.is_manager:
        return ManagerScope(actor_id=ctx.user_id, closure=team_closure(session, ctx.user_id))
    if ctx.is_sales_rep:
        return SalesRepScope(actor_id=ctx.user_id)
    raise ForbiddenError(f"Unknown role '{ctx.role}'")


def visible_users_query(scope: VisibilityScope) -> Select[tuple[User]]:
    stmt = select(User)
    visible = scope.visible_user_ids()
    if visible is not None:
        stmt = stmt.where(User.id.in_(sorted(visible)))
    return stmt
