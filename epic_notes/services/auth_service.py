# epic_notes/services/auth_service.py
from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.core.cookie_session import CommitOptions, CookieSession
from epic_notes.core.security import hash_password, verify_password
from epic_notes.models.session import UserSession
from epic_notes.repositories import connection_repo, session_repo, user_repo, verification_repo
from epic_notes.services.container import AuthContainer
from epic_notes.services.session_service import (
    SESSION_KEY,
    VERIFIED_TIME_KEY,
    VERIFIED_USER_ID_KEY,
    get_session_expiration_date,
    get_session_id,
)
from epic_notes.services.verification_registry import VerificationType, VerifyArgs
from epic_notes.services.verification_service import get_redirect_to_url
from epic_notes.web.flow import RedirectTo, safe_redirect, set_cookie
from epic_notes.web.toast import create_toast_headers

log = logging.getLogger(__name__)

# Keys im Verifizierungs-Cookie
UNVERIFIED_SESSION_ID_KEY = "unverified-session-id"
REMEMBER_KEY = "remember-me"

INVALID_CREDENTIALS = "Invalid username or password"


# Dummy-Hash, damit unbekannte Benutzernamen gleich lange brauchen
@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("not-a-real-password")


# =============================================================================
# 🔑 Login / Signup
# =============================================================================
def login(db: Session, c: AuthContainer, *, username: str, password: str) -> Optional[UserSession]:
    """Neue Session bei korrekten Zugangsdaten, sonst None (ohne Grund)."""
    user = user_repo.get_by_username(db, username)
    if user is None:
        verify_password(password, _dummy_hash())
        return None
    if not verify_password(password, user.password_hash):
        return None
    return session_repo.create_session(db, user.id, get_session_expiration_date(c.settings))


def signup(
    db: Session,
    c: AuthContainer,
    *,
    email: str,
    username: str,
    password: str,
    name: Optional[str],
) -> UserSession:
    """User + Rolle + Session in einer Transaktion. IntegrityError geht an den Aufrufer."""
    pwd_hash = hash_password(password, c.settings.PASSWORD_SCHEME)
    try:
        user = user_repo.add_user(db, username=username, email=email, name=name, password_hash=pwd_hash)
        session = session_repo.add_session(db, user.id, get_session_expiration_date(c.settings))
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(session)
    log.info("New user signed up: %s", user.username)
    return session


def signup_with_connection(
    db: Session,
    c: AuthContainer,
    *,
    email: str,
    username: str,
    name: Optional[str],
    provider_id: str,
    provider_name: str,
    image: Optional[Tuple[str, bytes]] = None,
) -> UserSession:
    """Wie ``signup``, aber ohne Passwort und mit verknüpfter Connection (+ Profilbild)."""
    try:
        user = user_repo.add_user(db, username=username, email=email, name=name)
        connection_repo.add_connection(
            db, user_id=user.id, provider_name=provider_name, provider_id=provider_id
        )
        if image is not None:
            content_type, blob = image
            user_repo.set_image(db, user, content_type=content_type, blob=blob)
        session = session_repo.add_session(db, user.id, get_session_expiration_date(c.settings))
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(session)
    log.info("New user signed up via %s: %s", provider_name, user.username)
    return session


def reset_user_password(db: Session, c: AuthContainer, *, username: str, password: str) -> bool:
    user = user_repo.get_by_username(db, username)
    if user is None:
        return False
    return user_repo.update_password_hash(db, user.id, hash_password(password, c.settings.PASSWORD_SCHEME))


# =============================================================================
# 🛡️ Zwei-Faktor
# =============================================================================
def get_verified_time(c: AuthContainer, request: Request, user_id: str) -> Optional[float]:
    """Zeitpunkt der letzten 2FA-Bestätigung, nur wenn sie für ``user_id`` galt."""
    cookie_session = c.session_storage.read(request)
    if cookie_session.get(VERIFIED_USER_ID_KEY) != user_id:
        return None
    value = cookie_session.get(VERIFIED_TIME_KEY)
    return float(value) if isinstance(value, (int, float)) else None


def is_two_fa_fresh(c: AuthContainer, request: Request, user_id: str) -> bool:
    verified_time = get_verified_time(c, request, user_id)
    if verified_time is None:
        return False
    return time.time() - verified_time <= c.settings.TWO_FA_FRESHNESS_SECONDS


def _has_pending_two_fa(db: Session, c: AuthContainer, request: Request, user_id: str) -> bool:
    # laufende 2FA-Anmeldung desselben Users auf diesem Gerät
    pending_id = c.verify_storage.read(request).get(UNVERIFIED_SESSION_ID_KEY)
    if not isinstance(pending_id, str) or not pending_id:
        return False
    pending = session_repo.get_valid_session(db, pending_id)
    return pending is not None and pending.user_id == user_id


def should_request_two_fa(db: Session, c: AuthContainer, request: Request, user_id: str) -> bool:
    if _has_pending_two_fa(db, c, request, user_id):
        return True
    if not verification_repo.exists_for(db, user_id, VerificationType.TWO_FA.value):
        return False
    return not is_two_fa_fresh(c, request, user_id)


def handle_new_session(
    db: Session,
    c: AuthContainer,
    request: Request,
    *,
    session: UserSession,
    remember: bool,
    redirect_to: Optional[str] = None,
) -> RedirectTo:
    """Frische Session entweder direkt ins Cookie oder erst durch die 2FA-Prüfung."""
    if should_request_two_fa(db, c, request, session.user_id):
        # neuer Verify-Flow, alte Inhalte des Cookies werden verworfen
        verify_session = CookieSession()
        verify_session.set(UNVERIFIED_SESSION_ID_KEY, session.id)
        verify_session.set(REMEMBER_KEY, bool(remember))
        url = get_redirect_to_url(
            type_=VerificationType.TWO_FA,
            target=session.user_id,
            redirect_to=redirect_to,
        )
        return RedirectTo(url, [set_cookie(c.verify_storage.commit_session(verify_session))])

    # neues Cookie; nur eine 2FA-Bestätigung desselben Users wird übernommen
    previous = c.session_storage.read(request)
    cookie_session = CookieSession()
    cookie_session.set(SESSION_KEY, session.id)
    if previous.get(VERIFIED_USER_ID_KEY) == session.user_id and previous.has(VERIFIED_TIME_KEY):
        cookie_session.set(VERIFIED_USER_ID_KEY, session.user_id)
        cookie_session.set(VERIFIED_TIME_KEY, previous.get(VERIFIED_TIME_KEY))
    options = CommitOptions(expires=session.expiration_date if remember else None)
    return RedirectTo(
        safe_redirect(redirect_to),
        [set_cookie(c.session_storage.commit_session(cookie_session, options))],
    )


def _invalid_session(c: AuthContainer, verify_session: CookieSession) -> RedirectTo:
    return RedirectTo(
        "/login",
        [
            set_cookie(c.verify_storage.destroy_session(verify_session)),
            *create_toast_headers(
                {
                    "type": "error",
                    "title": "Invalid session",
                    "description": "Could not find session to verify. Please try again.",
                },
                secure=c.settings.is_production,
            ),
        ],
    )


def handle_verification(args: VerifyArgs) -> RedirectTo:
    """Verify-Handler für ``2fa``: Login abschließen oder verifiedTime auffrischen."""
    db, c, request, submission = args.db, args.container, args.request, args.submission

    verify_session = c.verify_storage.read(request)
    cookie_session = c.session_storage.read(request)
    remember = bool(verify_session.get(REMEMBER_KEY))

    unverified_session_id = verify_session.get(UNVERIFIED_SESSION_ID_KEY)
    if unverified_session_id:
        session = session_repo.get_valid_session(db, str(unverified_session_id))
        if session is None or session.user_id != submission.target:
            log.info("2FA login for missing session %s rejected", unverified_session_id)
            return _invalid_session(c, verify_session)
        cookie_session = CookieSession()
        cookie_session.set(SESSION_KEY, session.id)
        options = CommitOptions(expires=session.expiration_date if remember else None)
    else:
        # Re-Verifizierung eines bereits eingeloggten Users
        current_id = get_session_id(c, request)
        current = session_repo.get_valid_session(db, current_id) if current_id else None
        if current is None or current.user_id != submission.target:
            return _invalid_session(c, verify_session)
        options = CommitOptions()

    cookie_session.set(VERIFIED_USER_ID_KEY, submission.target)
    cookie_session.set(VERIFIED_TIME_KEY, time.time())
    return RedirectTo(
        safe_redirect(submission.redirect_to),
        [
            set_cookie(c.session_storage.commit_session(cookie_session, options)),
            set_cookie(c.verify_storage.destroy_session(verify_session)),
        ],
    )
