# epic_notes/services/session_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.core.config import Settings
from epic_notes.repositories import session_repo
from epic_notes.services.container import AuthContainer
from epic_notes.web.flow import Continue, RedirectTo, safe_redirect, set_cookie

log = logging.getLogger(__name__)

# Keys im Session-Cookie
SESSION_KEY = "sessionId"
VERIFIED_TIME_KEY = "verifiedTime"
# User, für den verifiedTime gilt
VERIFIED_USER_ID_KEY = "verifiedUserId"

UserIdOutcome = Union[Continue[Optional[str]], RedirectTo]


def get_session_expiration_date(settings: Settings) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=settings.SESSION_EXPIRATION_DAYS)


def get_session_id(c: AuthContainer, request: Request) -> Optional[str]:
    value = c.session_storage.read(request).get(SESSION_KEY)
    return value if isinstance(value, str) and value else None


def get_user_id(db: Session, c: AuthContainer, request: Request) -> UserIdOutcome:
    """User-ID aus Cookie + Session-Tabelle.

    Cookie ohne gültige Session (gelöscht/abgelaufen) erzwingt ein Logout,
    damit veraltete Cookies nicht liegen bleiben.
    """
    session_id = get_session_id(c, request)
    if not session_id:
        return Continue(None)

    rec = session_repo.get_valid_session(db, session_id)
    if rec is None:
        log.info("Stale session cookie (session %s missing or expired), logging out", session_id)
        return logout(db, c, request)
    return Continue(rec.user_id)


def _login_redirect(request: Request, redirect_to: Optional[str]) -> RedirectTo:
    if redirect_to is None:
        redirect_to = request.url.path
        if request.url.query:
            redirect_to = f"{redirect_to}?{request.url.query}"
    url = "/login"
    if redirect_to:
        url = f"/login?{urlencode({'redirectTo': redirect_to})}"
    return RedirectTo(url)


def require_user_id(
    db: Session,
    c: AuthContainer,
    request: Request,
    redirect_to: Optional[str] = None,
) -> Union[Continue[str], RedirectTo]:
    res = get_user_id(db, c, request)
    if isinstance(res, RedirectTo):
        return res
    if res.value:
        return Continue(res.value)
    return _login_redirect(request, redirect_to)


def require_anonymous(db: Session, c: AuthContainer, request: Request) -> Union[Continue[None], RedirectTo]:
    res = get_user_id(db, c, request)
    if isinstance(res, RedirectTo):
        return res
    if res.value:
        return RedirectTo("/")
    return Continue(None)


def logout(db: Session, c: AuthContainer, request: Request, redirect_to: str = "/") -> RedirectTo:
    """Löscht die Session (best-effort) und das Cookie; gelingt immer."""
    cookie_session = c.session_storage.read(request)
    session_id = cookie_session.get(SESSION_KEY)
    if isinstance(session_id, str) and session_id:
        try:
            session_repo.delete_session(db, session_id)
        except SQLAlchemyError as ex:
            db.rollback()
            log.warning("Session delete failed during logout (%s): %s", session_id, ex)
    return RedirectTo(
        safe_redirect(redirect_to),
        [set_cookie(c.session_storage.destroy_session(cookie_session))],
    )
