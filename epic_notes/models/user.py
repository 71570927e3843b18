# epic_notes/models/user.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING, List

from sqlalchemy import Column, DateTime, ForeignKey, LargeBinary, String, Table, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from epic_notes.db.database import Base

if TYPE_CHECKING:
    from epic_notes.models.connection import Connection
    from epic_notes.models.session import UserSession


def _new_id() -> str:
    return str(uuid.uuid4())


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Role {self.name!r}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # OAuth-only User haben kein Passwort
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    roles: Mapped[List[Role]] = relationship(Role, secondary=user_roles, lazy="selectin")

    image: Mapped[Optional["UserImage"]] = relationship(
        "UserImage",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )

    sessions: Mapped[List["UserSession"]] = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    connections: Mapped[List["Connection"]] = relationship(
        "Connection",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} "
            f"username={self.username!r} "
            f"email={self.email!r}>"
        )


class UserImage(Base):
    __tablename__ = "user_images"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    blob: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    alt_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    user: Mapped[User] = relationship(User, back_populates="image")
