from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utcnow


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_SALES_REP = "sales_rep"
ROLE_VALUES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP)


class Role(Base):
    __tablename__ = "identity_role"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    value: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(80), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class User(Base):
    __tablename__ = "identity_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_role.id", ondelete="RESTRICT"), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    role: Mapped[Role] = relationship("Role", lazy="joined")

    __table_args__ = (Index("ix_identity_user_role_active", "role_id", "is_active"),)

    @property
    def role_value(self) -> str:
        return self.role.value


class Team(Base):
    __tablename__ = "identity_team"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    managers: Mapped[list[TeamManager]] = relationship(
        "TeamManager",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    members: Mapped[list[TeamMember]] = relationship(
        "TeamMember",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TeamManager(Base):
    __tablename__ = "identity_team_manager"

    team_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_team.id", ondelete="CASCADE"), primary_key=True)
    manager_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_user.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[User] = relationship("User", lazy="joined")

    __table_args__ = (Index("ix_identity_team_manager_manager", "manager_id"),)


class TeamMember(Base):
    __tablename__ = "identity_team_member"

    team_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_team.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_user.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[User] = relationship("User", lazy="joined")

    __table_args__ = (
        Index("ix_identity_team_member_user", "user_id"),
        UniqueConstraint("team_id", "user_id", name="uq_identity_team_member"),
    )
