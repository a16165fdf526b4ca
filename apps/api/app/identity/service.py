from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.core.auth import create_access_token, hash_password, verify_password
from app.core.config import get_settings
from app.core.errors import AuthenticationError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.identity.models import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_SALES_REP,
    ROLE_VALUES,
    Role,
    Team,
    TeamManager,
    TeamMember,
    User,
)
from app.identity.schemas import (
    ChangePasswordRequest,
    RegisterRequest,
    RoleRead,
    TeamCreate,
    TeamPage,
    TeamRead,
    TeamUpdate,
    TokenResponse,
    UserBrief,
    UserCreate,
    UserRead,
    UserUpdate,
)
from app.platform.security.context import AuthContext
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import managed_team_ids, resolve_scope, visible_users_query


logger = logging.getLogger("app.identity")

ROLE_LABELS = {ROLE_ADMIN: "Admin", ROLE_MANAGER: "Manager", ROLE_SALES_REP: "Sales Rep"}


def seed_roles(session: Session) -> dict[str, Role]:
    existing = {role.value: role for role in session.scalars(select(Role)).all()}
    for value in ROLE_VALUES:
        if value not in existing:
            role = Role(value=value, label=ROLE_LABELS[value])
            session.add(role)
            existing[value] = role
    session.flush()
    return existing


def get_role(session: Session, value: str) -> Role:
    role = session.scalar(select(Role).where(Role.value == value))
    if role is None:
        role = seed_roles(session)[value]
    return role


def _email_key(email: str) -> str:
    return email.strip().lower()


class UserRepository(BaseRepository):
    resource = "identity.user"


class TeamRepository(BaseRepository):
    resource = "identity.team"


@dataclass(slots=True)
class AuthProvider:
    """Credential check and token issue for the HTTP surface."""

    def authenticate(self, session: Session, email: str, password: str) -> User:
        user = session.scalar(select(User).where(User.email == _email_key(email)))
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise ForbiddenError("Account is deactivated")
        return user

    def login(self, session: Session, email: str, password: str) -> TokenResponse:
        user = self.authenticate(session, email, password)
        logger.info("user_login", extra={"status": "ok"})
        return self._token_response(user)

    def register(self, session: Session, dto: RegisterRequest) -> TokenResponse:
        user = user_service.create_account(
            session,
            full_name=dto.full_name,
            email=str(dto.email),
            password=dto.password,
            role_value=ROLE_SALES_REP,
        )
        session.commit()
        session.refresh(user)
        return self._token_response(user)

    def change_password(self, session: Session, ctx: AuthContext, dto: ChangePasswordRequest) -> None:
        user = session.get(User, ctx.user_id)
        if user is None:
            raise NotFoundError(f"User {ctx.user_id} not found")
        if not verify_password(dto.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect", details={"field": "current_password"})
        user.password_hash = hash_password(dto.new_password)
        session.commit()

    @staticmethod
    def _token_response(user: User) -> TokenResponse:
        return TokenResponse(
            access_token=create_access_token(user.id, user.role_value, user.email),
            user=UserRead.model_validate(user),
        )


@dataclass(slots=True)
class UserService:
    repository: UserRepository = field(default_factory=UserRepository)

    def create_account(
        self,
        session: Session,
        *,
        full_name: str,
        email: str,
        password: str,
        role_value: str,
        phone: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        normalized = _email_key(email)
        if session.scalar(select(User.id).where(User.email == normalized)) is not None:
            raise ConflictError("Email is already registered", details={"email": normalized})
        user = User(
            full_name=full_name.strip(),
            email=normalized,
            password_hash=hash_password(password),
            role=get_role(session, role_value),
            phone=phone,
            avatar_url=avatar_url,
            is_active=True,
        )
        session.add(user)
        session.flush()
        return user

    def create_user(self, session: Session, ctx: AuthContext, dto: UserCreate) -> UserRead:
        if not ctx.is_admin:
            raise self.repository.deny(ctx, "create", "Only admins can create users.")
        user = self.create_account(
            session,
            full_name=dto.full_name,
            email=str(dto.email),
            password=dto.password,
            role_value=dto.role,
            phone=dto.phone,
            avatar_url=dto.avatar_url,
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=user.id,
            action="create",
            before=None,
            after={"email": user.email, "role": dto.role},
            correlation_id=ctx.correlation_id,
        )
        self._commit(session, user.email)
        session.refresh(user)
        return UserRead.model_validate(user)

    def list_users(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        role: str | None = None,
        active: bool | None = None,
        q: str | None = None,
    ) -> list[UserRead]:
        stmt = visible_users_query(resolve_scope(session, ctx))
        if role is not None:
            stmt = stmt.join(Role, Role.id == User.role_id).where(Role.value == role)
        if active is not None:
            stmt = stmt.where(User.is_active.is_(active))
        term = (q or "").strip()
        if term:
            stmt = stmt.where(User.full_name.ilike(f"%{term}%") | User.email.ilike(f"%{term}%"))
        rows = session.scalars(stmt.order_by(User.full_name.asc(), User.id.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, ctx: AuthContext, user_id: int) -> UserRead:
        return UserRead.model_validate(self._visible_user(session, ctx, user_id))

    def update_user(self, session: Session, ctx: AuthContext, user_id: int, dto: UserUpdate) -> UserRead:
        user = self._visible_user(session, ctx, user_id)
        if ctx.is_sales_rep and user.id != ctx.user_id:
            raise self.repository.deny(ctx, "update", "You can only edit your own profile.", entity_id=user_id)

        payload = dto.model_dump(exclude_unset=True)
        if payload.get("email") is not None:
            payload["email"] = _email_key(str(payload["email"]))
            clash = session.scalar(select(User.id).where(User.email == payload["email"], User.id != user.id))
            if clash is not None:
                raise ConflictError("Email is already registered", details={"email": payload["email"]})
        if "full_name" in payload and payload["full_name"] is None:
            raise ValidationError("full_name cannot be cleared", details={"field": "full_name"})
        if "email" in payload and payload["email"] is None:
            raise ValidationError("email cannot be cleared", details={"field": "email"})

        for name, value in payload.items():
            setattr(user, name, value.strip() if name == "full_name" else value)
        self._commit(session, user.email)
        session.refresh(user)
        return UserRead.model_validate(user)

    def set_active(self, session: Session, ctx: AuthContext, user_id: int, is_active: bool) -> UserRead:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "toggle_active", "Sales reps cannot change account status.", entity_id=user_id)
        if user_id == ctx.user_id:
            raise ValidationError("You cannot change your own active flag", details={"user_id": user_id})
        user = self._visible_user(session, ctx, user_id)
        before = {"is_active": user.is_active}
        user.is_active = is_active
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=user.id,
            action="activate" if is_active else "deactivate",
            before=before,
            after={"is_active": is_active},
            correlation_id=ctx.correlation_id,
        )
        session.commit()
        session.refresh(user)
        return UserRead.model_validate(user)

    def _visible_user(self, session: Session, ctx: AuthContext, user_id: int) -> User:
        user = session.get(User, user_id)
        visible = resolve_scope(session, ctx).visible_user_ids()
        if user is None or (visible is not None and user.id not in visible):
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
        return user

    @staticmethod
    def _commit(session: Session, email: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Email is already registered", details={"email": email}) from exc


def to_team_read(team: Team) -> TeamRead:
    return TeamRead(
        id=team.id,
        name=team.name,
        managers=[UserBrief.model_validate(row.user) for row in sorted(team.managers, key=lambda row: row.manager_id)],
        members=[UserBrief.model_validate(row.user) for row in sorted(team.members, key=lambda row: row.user_id)],
        created_at=team.created_at,
        updated_at=team.updated_at,
    )


@dataclass(slots=True)
class TeamService:
    repository: TeamRepository = field(default_factory=TeamRepository)

    def list_teams(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        q: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> TeamPage:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "read", "Sales reps cannot browse teams.")
        stmt = select(Team)
        if ctx.is_manager:
            stmt = stmt.where(Team.id.in_(sorted(managed_team_ids(session, ctx.user_id))))
        term = (q or "").strip()
        if term:
            stmt = stmt.where(Team.name.ilike(f"%{term}%"))
        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        rows = session.scalars(
            stmt.order_by(Team.name.asc(), Team.id.asc()).offset((page - 1) * page_size).limit(page_size)
        ).unique().all()
        return TeamPage(
            items=[to_team_read(row) for row in rows],
            page=page,
            page_size=page_size,
            total=total,
            pages=-(-total // page_size) if page_size else 0,
        )

    def my_teams(self, session: Session, ctx: AuthContext) -> list[TeamRead]:
        team_ids = managed_team_ids(session, ctx.user_id)
        member_of = session.scalars(select(TeamMember.team_id).where(TeamMember.user_id == ctx.user_id)).all()
        ids = sorted(team_ids | set(member_of))
        if not ids:
            return []
        rows = session.scalars(select(Team).where(Team.id.in_(ids)).order_by(Team.name.asc())).unique().all()
        return [to_team_read(row) for row in rows]

    def get_team(self, session: Session, ctx: AuthContext, team_id: int) -> TeamRead:
        return to_team_read(self._readable_team(session, ctx, team_id))

    def create_team(self, session: Session, ctx: AuthContext, dto: TeamCreate) -> TeamRead:
        self._require_admin(ctx, "create")
        name = dto.name.strip()
        self._ensure_unique_name(session, name)
        managers = self._load_managers(session, dto.manager_ids)
        members = self._load_members(session, dto.member_ids)

        team = Team(name=name)
        team.managers = [TeamManager(manager_id=user.id) for user in managers]
        team.members = [TeamMember(user_id=user.id) for user in members]
        session.add(team)
        self._commit(session, name)
        session.refresh(team)
        self._audit(ctx, team.id, "create", None, to_team_read(team).model_dump(mode="json"))
        return to_team_read(team)

    def update_team(self, session: Session, ctx: AuthContext, team_id: int, dto: TeamUpdate) -> TeamRead:
        self._require_admin(ctx, "update")
        team = self._get_team(session, team_id)
        before = to_team_read(team).model_dump(mode="json")

        if dto.name is not None:
            name = dto.name.strip()
            self._ensure_unique_name(session, name, exclude_id=team.id)
            team.name = name
        if dto.manager_ids is not None:
            if not dto.manager_ids:
                raise ValidationError("A team needs at least one manager", details={"field": "manager_ids"})
            managers = self._load_managers(session, dto.manager_ids)
            keep = {user.id for user in managers}
            team.managers = [row for row in team.managers if row.manager_id in keep] + [
                TeamManager(manager_id=user_id)
                for user_id in sorted(keep - {row.manager_id for row in team.managers})
            ]
        if dto.member_ids is not None:
            members = self._load_members(session, dto.member_ids)
            keep = {user.id for user in members}
            team.members = [row for row in team.members if row.user_id in keep] + [
                TeamMember(user_id=user_id) for user_id in sorted(keep - {row.user_id for row in team.members})
            ]

        self._commit(session, team.name)
        session.refresh(team)
        after = to_team_read(team)
        self._audit(ctx, team.id, "update", before, after.model_dump(mode="json"))
        return after

    def delete_team(self, session: Session, ctx: AuthContext, team_id: int) -> None:
        self._require_admin(ctx, "delete")
        team = self._get_team(session, team_id)
        before = to_team_read(team).model_dump(mode="json")
        session.delete(team)
        session.commit()
        self._audit(ctx, team_id, "delete", before, None)

    def add_member(self, session: Session, ctx: AuthContext, team_id: int, user_id: int) -> TeamRead:
        team = self._writable_team(session, ctx, team_id, "add_member")
        if any(row.user_id == user_id for row in team.members):
            raise ValidationError("User is already a member of this team", details={"user_id": user_id})
        (user,) = self._load_members(session, [user_id])
        if ctx.is_manager and user.role_value != ROLE_SALES_REP:
            raise self.repository.deny(ctx, "add_member", "Managers can only add sales reps.", entity_id=team_id)
        team.members.append(TeamMember(user_id=user.id))
        session.commit()
        session.refresh(team)
        self._audit(ctx, team.id, "add_member", None, {"user_id": user.id})
        return to_team_read(team)

    def remove_member(self, session: Session, ctx: AuthContext, team_id: int, user_id: int) -> TeamRead:
        team = self._writable_team(session, ctx, team_id, "remove_member")
        if ctx.is_manager and user_id == ctx.user_id:
            raise self.repository.deny(
                ctx, "remove_member", "Managers cannot remove themselves from their team.", entity_id=team_id
            )
        membership = next((row for row in team.members if row.user_id == user_id), None)
        if membership is None:
            raise NotFoundError("User is not a member of this team", details={"team_id": team_id, "user_id": user_id})
        team.members.remove(membership)
        session.commit()
        session.refresh(team)
        self._audit(ctx, team.id, "remove_member", {"user_id": user_id}, None)
        return to_team_read(team)

    def add_manager(self, session: Session, ctx: AuthContext, team_id: int, user_id: int) -> TeamRead:
        self._require_admin(ctx, "add_manager")
        team = self._get_team(session, team_id)
        if any(row.manager_id == user_id for row in team.managers):
            raise ValidationError("User already manages this team", details={"user_id": user_id})
        self._check_single_manager(len(team.managers) + 1)
        (user,) = self._load_managers(session, [user_id])
        team.managers.append(TeamManager(manager_id=user.id))
        session.commit()
        session.refresh(team)
        self._audit(ctx, team.id, "add_manager", None, {"user_id": user.id})
        return to_team_read(team)

    def remove_manager(self, session: Session, ctx: AuthContext, team_id: int, user_id: int) -> TeamRead:
        self._require_admin(ctx, "remove_manager")
        team = self._get_team(session, team_id)
        link = next((row for row in team.managers if row.manager_id == user_id), None)
        if link is None:
            raise NotFoundError("User does not manage this team", details={"team_id": team_id, "user_id": user_id})
        if len(team.managers) == 1:
            raise ValidationError("A team needs at least one manager", details={"team_id": team_id})
        team.managers.remove(link)
        session.commit()
        session.refresh(team)
        self._audit(ctx, team.id, "remove_manager", {"user_id": user_id}, None)
        return to_team_read(team)

    def _get_team(self, session: Session, team_id: int) -> Team:
        team = session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found", details={"team_id": team_id})
        return team

    def _readable_team(self, session: Session, ctx: AuthContext, team_id: int) -> Team:
        team = self._get_team(session, team_id)
        if ctx.is_admin:
            return team
        if ctx.is_manager and any(row.manager_id == ctx.user_id for row in team.managers):
            return team
        if any(row.user_id == ctx.user_id for row in team.members):
            return team
        raise NotFoundError(f"Team {team_id} not found", details={"team_id": team_id})

    def _writable_team(self, session: Session, ctx: AuthContext, team_id: int, action: str) -> Team:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, action, "Sales reps cannot change teams.", entity_id=team_id)
        team = self._get_team(session, team_id)
        if ctx.is_manager and not any(row.manager_id == ctx.user_id for row in team.managers):
            raise self.repository.deny(ctx, action, "You do not manage this team.", entity_id=team_id)
        return team

    def _load_managers(self, session: Session, user_ids: Iterable[int]) -> list[User]:
        users = _load_users(session, user_ids)
        self._check_single_manager(len(users))
        for user in users:
            if user.role_value != ROLE_MANAGER:
                raise ValidationError(f"User {user.id} is not a manager", details={"user_id": user.id})
            if not user.is_active:
                raise ValidationError(f"User {user.id} is not active", details={"user_id": user.id})
        return users

    @staticmethod
    def _load_members(session: Session, user_ids: Iterable[int]) -> list[User]:
        users = _load_users(session, user_ids)
        for user in users:
            if not user.is_active:
                raise ValidationError(f"User {user.id} is not active", details={"user_id": user.id})
        return users

    @staticmethod
    def _check_single_manager(count: int) -> None:
        if get_settings().team_single_manager and count > 1:
            raise ValidationError("A team can have only one manager", details={"manager_count": count})

    @staticmethod
    def _ensure_unique_name(session: Session, name: str, *, exclude_id: int | None = None) -> None:
        stmt = select(Team.id).where(Team.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Team.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise ConflictError(f"Team '{name}' already exists", details={"name": name})

    @staticmethod
    def _commit(session: Session, name: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(f"Team '{name}' already exists", details={"name": name}) from exc

    def _require_admin(self, ctx: AuthContext, action: str) -> None:
        if not ctx.is_admin:
            raise self.repository.deny(ctx, action, "Only admins can manage teams.")

    def _audit(self, ctx: AuthContext, team_id: int, action: str, before: dict | None, after: dict | None) -> None:
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=team_id,
            action=action,
            before=before,
            after=after,
            correlation_id=ctx.correlation_id,
        )


@dataclass(slots=True)
class LookupService:
    def roles(self, session: Session) -> list[RoleRead]:
        rows = session.scalars(select(Role).order_by(Role.id.asc())).all()
        return [RoleRead.model_validate(row) for row in rows]

    def managers(self, session: Session) -> list[UserBrief]:
        return self._active_with_role(session, ROLE_MANAGER)

    def unassigned_sales_reps(self, session: Session) -> list[UserBrief]:
        in_team = select(TeamMember.user_id)
        rows = session.scalars(
            self._active_with_role_query(ROLE_SALES_REP).where(User.id.not_in(in_team))
        ).all()
        return [UserBrief.model_validate(row) for row in rows]

    def _active_with_role(self, session: Session, role_value: str) -> list[UserBrief]:
        rows = session.scalars(self._active_with_role_query(role_value)).all()
        return [UserBrief.model_validate(row) for row in rows]

    @staticmethod
    def _active_with_role_query(role_value: str) -> Select[tuple[User]]:
        return (
            select(User)
            .join(Role, Role.id == User.role_id)
            .where(Role.value == role_value, User.is_active.is_(True))
            .order_by(User.full_name.asc(), User.id.asc())
        )


def _load_users(session: Session, user_ids: Iterable[int]) -> list[User]:
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return []
    users = {user.id: user for user in session.scalars(select(User).where(User.id.in_(ids))).all()}
    missing = [user_id for user_id in ids if user_id not in users]
    if missing:
        raise NotFoundError("Some users were not found", details={"user_ids": missing})
    return [users[user_id] for user_id in ids]


auth_provider = AuthProvider()
user_service = UserService()
team_service = TeamService()
lookup_service = LookupService()
