# epic_notes/repositories/user_repo.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql import exists

from epic_notes.models.user import Role, User, UserImage


# ------------------------------------------------------------
# READ
# ------------------------------------------------------------
def get_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def get_by_email(db: Session, email: str) -> Optional[User]:
    return db.scalar(select(User).where(User.email == email.lower()))


def get_by_username(db: Session, username: str) -> Optional[User]:
    return db.scalar(select(User).where(User.username == username.lower()))


def get_by_identifier(db: Session, identifier: str) -> Optional[User]:
    """E-Mail oder Benutzername."""
    ident = identifier.strip().lower()
    return db.scalar(select(User).where(or_(User.email == ident, User.username == ident)))


def is_username_available(db: Session, username: str) -> bool:
    return not db.scalar(select(exists().where(User.username == username.lower())))


def is_email_available(db: Session, email: str) -> bool:
    return not db.scalar(select(exists().where(User.email == email.lower())))


# ------------------------------------------------------------
# CREATE
# ------------------------------------------------------------
def get_or_create_role(db: Session, name: str) -> Role:
    role = db.scalar(select(Role).where(Role.name == name))
    if role:
        return role
    role = Role(name=name)
    db.add(role)
    db.flush()
    return role


def add_user(
    db: Session,
    *,
    username: str,
    email: str,
    name: Optional[str],
    password_hash: Optional[str] = None,
    role_name: str = "user",
) -> User:
    """Legt den User an, ohne zu committen (Teil einer größeren Transaktion)."""
    user = User(
        username=username.lower(),
        email=email.lower(),
        name=name,
        password_hash=password_hash,
    )
    user.roles.append(get_or_create_role(db, role_name))
    db.add(user)
    db.flush()
    return user


def set_image(db: Session, user: User, *, content_type: str, blob: bytes, alt_text: Optional[str] = None) -> UserImage:
    image = UserImage(user_id=user.id, content_type=content_type, blob=blob, alt_text=alt_text)
    db.add(image)
    db.flush()
    return image


# ------------------------------------------------------------
# UPDATE
# ------------------------------------------------------------
def update_password_hash(db: Session, user_id: str, new_hash: str) -> bool:
    user = db.get(User, user_id)
    if not user:
        return False
    user.password_hash = new_hash
    db.commit()
    return True


def update_email(db: Session, user_id: str, new_email: str) -> Optional[User]:
    user = db.get(User, user_id)
    if not user:
        return None
    user.email = new_email.lower()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(user)
    return user


def update_profile(db: Session, user_id: str, *, username: str, name: Optional[str]) -> Optional[User]:
    user = db.get(User, user_id)
    if not user:
        return None
    user.username = username.lower()
    user.name = name
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(user)
    return user


# ------------------------------------------------------------
# DELETE
# ------------------------------------------------------------
def delete_user(db: Session, user_id: str) -> bool:
    """Löscht den User; Sessions, Connections und Bild kaskadieren."""
    user = db.get(User, user_id)
    if not user:
        return False
    db.delete(user)
    db.commit()
    return True
