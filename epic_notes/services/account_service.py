# epic_notes/services/account_service.py
from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.core.errors import not_found
from epic_notes.models.user import User
from epic_notes.repositories import connection_repo, session_repo, user_repo, verification_repo
from epic_notes.schemas.auth import ProfileForm
from epic_notes.services import two_factor_service
from epic_notes.services.container import AuthContainer
from epic_notes.services.session_service import get_session_id
from epic_notes.web.flow import FlowOutcome, RedirectTo, Reply, form_error, set_cookie
from epic_notes.web.toast import create_toast_headers

log = logging.getLogger(__name__)


def get_user_or_404(db: Session, user_id: str) -> User:
    user = user_repo.get_by_id(db, user_id)
    if user is None:
        not_found("USER_NOT_FOUND", "User not found")
    return user


def get_profile(db: Session, c: AuthContainer, request: Request, user_id: str) -> Dict[str, Any]:
    user = get_user_or_404(db, user_id)
    current_session = get_session_id(c, request)
    return {
        "user": {
            "id": user.id,
            "username": user.username,
            "name": user.name,
            "email": user.email,
            "hasImage": user.image is not None,
            "roles": [r.name for r in user.roles],
            "createdAt": user.created_at.isoformat() if user.created_at else None,
        },
        "hasPassword": bool(user.password_hash),
        "isTwoFactorEnabled": two_factor_service.is_enabled(db, user.id),
        "connectionCount": connection_repo.count_for_user(db, user.id),
        "otherSessionCount": max(0, session_repo.count_sessions(db, user.id) - (1 if current_session else 0)),
    }


def update_profile(db: Session, user_id: str, form: ProfileForm) -> Reply:
    existing = user_repo.get_by_username(db, form.username)
    if existing is not None and existing.id != user_id:
        return form_error({"username": ["A user already exists with this username"]})
    try:
        user = user_repo.update_profile(db, user_id, username=form.username, name=form.name)
    except IntegrityError:
        return form_error({"username": ["A user already exists with this username"]})
    if user is None:
        not_found("USER_NOT_FOUND", "User not found")
    return Reply({"status": "success"})


def sign_out_other_sessions(db: Session, c: AuthContainer, request: Request, user_id: str) -> Reply:
    removed = session_repo.delete_other_sessions(db, user_id, get_session_id(c, request))
    log.info("User %s signed out of %d other session(s)", user_id, removed)
    return Reply({"status": "success"})


def delete_account(db: Session, c: AuthContainer, request: Request, user_id: str) -> FlowOutcome:
    """Löscht den User samt Sessions, Connections und Bild; Cookie wird gelöscht."""
    user = get_user_or_404(db, user_id)
    verification_repo.delete_all_for_targets(db, user.id, user.email, user.username)
    user_repo.delete_user(db, user.id)
    log.info("Account %s deleted", user_id)
    cookie_session = c.session_storage.read(request)
    return RedirectTo(
        "/",
        [
            set_cookie(c.session_storage.destroy_session(cookie_session)),
            *create_toast_headers(
                {"type": "success", "title": "Data Deleted", "description": "All of your data has been deleted"},
                secure=c.settings.is_production,
            ),
        ],
    )
