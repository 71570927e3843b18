# epic_notes/services/connection_service.py
from __future__ import annotations

import logging
import re
import secrets
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.core.errors import invariant_response, not_found
from epic_notes.repositories import connection_repo, session_repo, user_repo
from epic_notes.services import auth_service
from epic_notes.services.container import AuthContainer
from epic_notes.services.onboarding_service import (
    ONBOARDING_EMAIL_KEY,
    PREFILLED_PROFILE_KEY,
    PROVIDER_ID_KEY,
)
from epic_notes.services.providers.base import AuthProvider, ProviderAuthError, ProviderUser
from epic_notes.services.session_service import get_session_expiration_date, get_user_id
from epic_notes.web.flow import Header, RedirectTo, safe_redirect, set_cookie
from epic_notes.web.toast import Toast, create_toast_headers

log = logging.getLogger(__name__)

# Keys im Connection-Cookie
STATE_KEY = "oauth2:state"
REDIRECT_TO_KEY = "redirectTo"

CONNECTIONS_PATH = "/settings/profile/connections"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def sanitize_username(username: Optional[str]) -> Optional[str]:
    """Provider-Handle -> gültiger Benutzername (a-z0-9_, 3..20 Zeichen)."""
    if username is None:
        return None
    return _NON_ALNUM.sub("_", username).lower()[:20].ljust(3, "_")


# =============================================================================
# 🚀 Handshake starten
# =============================================================================
def start_connection(
    c: AuthContainer,
    request: Request,
    provider: AuthProvider,
    *,
    redirect_to: Optional[str] = None,
) -> RedirectTo:
    connection_session = c.connection_storage.read(request)
    state = secrets.token_urlsafe(24)
    connection_session.set(STATE_KEY, state)
    if redirect_to:
        connection_session.set(REDIRECT_TO_KEY, safe_redirect(redirect_to))
    else:
        connection_session.unset(REDIRECT_TO_KEY)
    return RedirectTo(
        provider.authorization_url(state),
        [set_cookie(c.connection_storage.commit_session(connection_session))],
    )


# =============================================================================
# 🔁 Callback
# =============================================================================
def _toast(c: AuthContainer, toast: Toast) -> List[Header]:
    return create_toast_headers(toast, secure=c.settings.is_production)


def _login_with_error(c: AuthContainer, cleanup: List[Header], title: str, description: str) -> RedirectTo:
    return RedirectTo(
        "/login",
        [*cleanup, *_toast(c, {"type": "error", "title": title, "description": description})],
    )


def handle_callback(
    db: Session,
    c: AuthContainer,
    request: Request,
    provider: AuthProvider,
    *,
    code: Optional[str],
    state: Optional[str],
) -> RedirectTo:
    """Entscheidungsbaum nach der Rückkehr vom Provider."""
    label = provider.label
    connection_session = c.connection_storage.read(request)
    expected_state = connection_session.get(STATE_KEY)
    stored_redirect = connection_session.get(REDIRECT_TO_KEY)
    # Connection-Cookie ist nach dem Callback in jedem Fall verbraucht
    cleanup = [set_cookie(c.connection_storage.destroy_session(connection_session))]

    if not expected_state or not state or not secrets.compare_digest(str(expected_state), str(state)):
        log.warning("OAuth state mismatch for %s callback", provider.name)
        return _login_with_error(c, cleanup, "Auth failed", f"An error occured while authenticating with {label}.")

    if not code:
        log.warning("OAuth callback for %s without code", provider.name)
        return _login_with_error(c, cleanup, "Auth failed", f"An error occured while authenticating with {label}.")

    try:
        profile = provider.authenticate(code)
    except ProviderAuthError:
        log.exception("Authentication with %s failed", provider.name)
        return _login_with_error(c, cleanup, "Auth failed", f"An error occured while authenticating with {label}.")

    if not profile.email:
        return _login_with_error(
            c, cleanup, "No email found", f"Your {label} account does not have a verified email address."
        )

    existing = connection_repo.get_by_provider(db, provider.name, profile.id)

    user_res = get_user_id(db, c, request)
    if isinstance(user_res, RedirectTo):
        # veraltetes Session-Cookie: erst ausloggen
        return user_res.with_headers(cleanup)
    user_id = user_res.value

    if existing is not None and user_id:
        description = (
            f"You have already connected to your {label} account."
            if existing.user_id == user_id
            else f"That's someone else's {label} account"
        )
        return RedirectTo(
            CONNECTIONS_PATH,
            [*cleanup, *_toast(c, {"type": "error", "title": "Already connected", "description": description})],
        )

    if user_id:
        try:
            connection_repo.create_connection(
                db, user_id=user_id, provider_name=provider.name, provider_id=profile.id
            )
        except IntegrityError:
            db.rollback()
            log.info("Concurrent connect of %s account %s", provider.name, profile.id)
            return RedirectTo(
                CONNECTIONS_PATH,
                [*cleanup, *_toast(c, {"type": "error", "title": "Already connected", "description": f"That {label} account is already connected."})],
            )
        return RedirectTo(
            CONNECTIONS_PATH,
            [
                *cleanup,
                *_toast(c, {"type": "success", "title": "Connected", "description": f'Your "{profile.username}" {label} account is connected.'}),
            ],
        )

    if existing is not None:
        return _make_session(
            db, c, request, existing.user_id,
            redirect_to=stored_redirect if isinstance(stored_redirect, str) else None,
            extra=cleanup,
        )

    # gleiche E-Mail wie ein bestehender Account -> automatisch verknüpfen
    user = user_repo.get_by_email(db, profile.email)
    if user is not None:
        try:
            connection_repo.create_connection(
                db, user_id=user.id, provider_name=provider.name, provider_id=profile.id
            )
        except IntegrityError:
            db.rollback()
            return _login_with_error(c, cleanup, "Auth failed", f"An error occured while authenticating with {label}.")
        return _make_session(
            db, c, request, user.id,
            redirect_to=CONNECTIONS_PATH,
            extra=[
                *cleanup,
                *_toast(c, {"type": "success", "title": "Connected", "description": f'Your "{profile.username}" {label} account has been connected.'}),
            ],
        )

    return _start_provider_onboarding(c, request, provider, profile, cleanup)


def _make_session(
    db: Session,
    c: AuthContainer,
    request: Request,
    user_id: str,
    *,
    redirect_to: Optional[str],
    extra: List[Header],
) -> RedirectTo:
    session = session_repo.create_session(db, user_id, get_session_expiration_date(c.settings))
    outcome = auth_service.handle_new_session(
        db, c, request, session=session, remember=True, redirect_to=redirect_to or "/"
    )
    return outcome.with_headers(extra)


def _start_provider_onboarding(
    c: AuthContainer,
    request: Request,
    provider: AuthProvider,
    profile: ProviderUser,
    cleanup: List[Header],
) -> RedirectTo:
    prefilled: Dict[str, Any] = {
        "email": profile.email,
        "username": sanitize_username(profile.username),
        "name": profile.name,
        "imageUrl": profile.image_url,
    }
    verify_session = c.verify_storage.read(request)
    verify_session.set(ONBOARDING_EMAIL_KEY, profile.email)
    verify_session.set(PREFILLED_PROFILE_KEY, prefilled)
    verify_session.set(PROVIDER_ID_KEY, profile.id)
    return RedirectTo(
        f"/onboarding/{provider.name}",
        [*cleanup, set_cookie(c.verify_storage.commit_session(verify_session))],
    )


# =============================================================================
# 🔗 Verknüpfungen verwalten
# =============================================================================
def user_can_delete_connections(db: Session, user_id: str) -> bool:
    """Löschen nur, wenn danach noch ein Login-Weg bleibt."""
    user = user_repo.get_by_id(db, user_id)
    if user is None:
        return False
    if user.password_hash:
        return True
    return connection_repo.count_for_user(db, user_id) > 1


def list_connections(db: Session, c: AuthContainer, user_id: str) -> List[Dict[str, Any]]:
    items = []
    for conn in connection_repo.list_for_user(db, user_id):
        provider = c.provider(conn.provider_name)
        if provider is None:
            display_name, link = "Unknown", None
        else:
            data = provider.resolve_connection_data(conn.provider_id)
            display_name, link = data.display_name, data.link
        items.append(
            {
                "id": conn.id,
                "providerName": conn.provider_name,
                "displayName": display_name,
                "link": link,
                "createdAt": conn.created_at.isoformat() if conn.created_at else None,
            }
        )
    return items


def delete_connection(db: Session, c: AuthContainer, *, user_id: str, connection_id: str) -> RedirectTo:
    invariant_response(
        user_can_delete_connections(db, user_id),
        "CONNECTION_REQUIRED",
        "You cannot delete your last connection unless you have a password.",
    )
    if not connection_repo.delete_for_user(db, connection_id, user_id):
        not_found("CONNECTION_NOT_FOUND", "Connection not found")
    return RedirectTo(
        CONNECTIONS_PATH,
        _toast(c, {"type": "success", "title": "Deleted", "description": "Your connection has been deleted."}),
    )
