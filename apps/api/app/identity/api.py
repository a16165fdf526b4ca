from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.identity.models import User
from app.identity.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    RoleRead,
    TeamCreate,
    TeamPage,
    TeamRead,
    TeamUpdate,
    TeamUserRequest,
    TokenResponse,
    UserActiveUpdate,
    UserBrief,
    UserCreate,
    UserRead,
    UserUpdate,
)
from app.identity.service import auth_provider, lookup_service, team_service, user_service
from app.platform.security.context import AuthContext
from app.platform.security.dependencies import get_auth_context


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])
teams_router = APIRouter(prefix="/api/teams", tags=["teams"])
lookups_router = APIRouter(prefix="/api/lookups", tags=["lookups"])


@auth_router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    return auth_provider.login(db, str(payload.email), payload.password)


@auth_router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    return auth_provider.register(db, payload)


@auth_router.get("/me", response_model=UserRead)
def me(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return UserRead.model_validate(db.get(User, ctx.user_id))


@auth_router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    auth_provider.change_password(db, ctx, payload)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@users_router.get("", response_model=list[UserRead])
def list_users(
    role: str | None = Query(default=None, pattern="^(admin|manager|sales_rep)$"),
    active: bool | None = Query(default=None),
    q: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UserRead]:
    return user_service.list_users(db, ctx, role=role, active=active, q=q)


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return user_service.create_user(db, ctx, payload)


@users_router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return user_service.get_user(db, ctx, user_id)


@users_router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return user_service.update_user(db, ctx, user_id, payload)


@users_router.patch("/{user_id}/active", response_model=UserRead)
def set_user_active(
    user_id: int,
    payload: UserActiveUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return user_service.set_active(db, ctx, user_id, payload.is_active)


@teams_router.get("", response_model=TeamPage)
def list_teams(
    q: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamPage:
    return team_service.list_teams(db, ctx, q=q, page=page, page_size=page_size)


@teams_router.get("/mine", response_model=list[TeamRead])
def my_teams(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[TeamRead]:
    return team_service.my_teams(db, ctx)


@teams_router.post("", response_model=TeamRead, status_code=status.HTTP_201_CREATED)
def create_team(
    payload: TeamCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.create_team(db, ctx, payload)


@teams_router.get("/{team_id}", response_model=TeamRead)
def get_team(
    team_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.get_team(db, ctx, team_id)


@teams_router.patch("/{team_id}", response_model=TeamRead)
def update_team(
    team_id: int,
    payload: TeamUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.update_team(db, ctx, team_id, payload)


@teams_router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_team(
    team_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    team_service.delete_team(db, ctx, team_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@teams_router.post("/{team_id}/members", response_model=TeamRead)
def add_team_member(
    team_id: int,
    payload: TeamUserRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.add_member(db, ctx, team_id, payload.user_id)


@teams_router.delete("/{team_id}/members/{user_id}", response_model=TeamRead)
def remove_team_member(
    team_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.remove_member(db, ctx, team_id, user_id)


@teams_router.post("/{team_id}/managers", response_model=TeamRead)
def add_team_manager(
    team_id: int,
    payload: TeamUserRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.add_manager(db, ctx, team_id, payload.user_id)


@teams_router.delete("/{team_id}/managers/{user_id}", response_model=TeamRead)
def remove_team_manager(
    team_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamRead:
    return team_service.remove_manager(db, ctx, team_id, user_id)


@lookups_router.get("/roles", response_model=list[RoleRead])
def lookup_roles(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(get_auth_context),
) -> list[RoleRead]:
    return lookup_service.roles(db)


@lookups_router.get("/managers", response_model=list[UserBrief])
def lookup_managers(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(get_auth_context),
) -> list[UserBrief]:
    return lookup_service.managers(db)


@lookups_router.get("/unassigned-sales-reps", response_model=list[UserBrief])
def lookup_unassigned_sales_reps(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(get_auth_context),
) -> list[UserBrief]:
    return lookup_service.unassigned_sales_reps(db)
