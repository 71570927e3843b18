# epic_notes/api/routes/profile.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from epic_notes.api.deps import get_container, get_form, require_user_id
from epic_notes.core.errors import bad_request
from epic_notes.db.database import get_db
from epic_notes.schemas.auth import ChangeEmailForm, ProfileForm, TwoFactorCodeForm, parse_form
from epic_notes.services import account_service, connection_service, email_change_service, two_factor_service
from epic_notes.services.container import AuthContainer
from epic_notes.web.flow import Reply, form_error, to_response

router = APIRouter(prefix="/settings/profile", tags=["Profile"])

UPDATE_PROFILE_INTENT = "update-profile"
SIGN_OUT_OTHER_SESSIONS_INTENT = "sign-out-other-sessions"
DELETE_ACCOUNT_INTENT = "delete-account"


# ============================================================
# Profil
# ============================================================
@router.get("")
def profile_page(
    request: Request,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    return account_service.get_profile(db, c, request, user_id)


@router.post("")
def profile_action(
    request: Request,
    user_id: str = Depends(require_user_id),
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    intent = form.get("intent")
    if intent == UPDATE_PROFILE_INTENT:
        data = parse_form(ProfileForm, form)
        if isinstance(data, Reply):
            return to_response(data)
        return to_response(account_service.update_profile(db, user_id, data))
    if intent == SIGN_OUT_OTHER_SESSIONS_INTENT:
        return to_response(account_service.sign_out_other_sessions(db, c, request, user_id))
    if intent == DELETE_ACCOUNT_INTENT:
        return to_response(account_service.delete_account(db, c, request, user_id))
    bad_request("INVALID_INTENT", f"Invalid intent {intent!r}")


# ============================================================
# E-Mail ändern
# ============================================================
@router.get("/change-email")
def change_email_page(
    request: Request,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    reverify = two_factor_service.require_recent_verification(db, c, request, user_id)
    if reverify is not None:
        return to_response(reverify)
    user = account_service.get_user_or_404(db, user_id)
    return {"user": {"email": user.email}}


@router.post("/change-email")
def change_email(
    request: Request,
    user_id: str = Depends(require_user_id),
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    reverify = two_factor_service.require_recent_verification(db, c, request, user_id)
    if reverify is not None:
        return to_response(reverify)
    data = parse_form(ChangeEmailForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(
        email_change_service.start_email_change(db, c, request, user_id=user_id, new_email=data.email)
    )


# ============================================================
# Verknüpfte Accounts
# ============================================================
@router.get("/connections")
def connections_page(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    return {
        "connections": connection_service.list_connections(db, c, user_id),
        "canDeleteConnections": connection_service.user_can_delete_connections(db, user_id),
        "providers": [{"name": p.name, "label": p.label} for p in c.providers.values()],
    }


@router.post("/connections")
def delete_connection(
    user_id: str = Depends(require_user_id),
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    connection_id = form.get("connectionId")
    if not isinstance(connection_id, str) or not connection_id:
        return to_response(form_error({"connectionId": ["Connection id is required"]}))
    return to_response(connection_service.delete_connection(db, c, user_id=user_id, connection_id=connection_id))


# ============================================================
# Zwei-Faktor-Authentifizierung
# ============================================================
@router.get("/two-factor")
def two_factor_page(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    user = account_service.get_user_or_404(db, user_id)
    return {
        "isTwoFactorEnabled": two_factor_service.is_enabled(db, user_id),
        "pending": two_factor_service.get_pending_setup(db, c, user),
    }


@router.post("/two-factor")
def two_factor_enable(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    if two_factor_service.is_enabled(db, user_id):
        return to_response(form_error({"": ["Two-factor authentication is already enabled."]}))
    user = account_service.get_user_or_404(db, user_id)
    pending = two_factor_service.start_enable(db, c, user)
    return {"status": "pending", "otpUri": pending["otp_uri"], "secret": pending["secret"]}


@router.post("/two-factor/verify")
def two_factor_verify(
    user_id: str = Depends(require_user_id),
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    data = parse_form(TwoFactorCodeForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(two_factor_service.confirm_enable(db, c, user_id=user_id, code=data.code))


@router.get("/two-factor/disable")
def two_factor_disable_page(
    request: Request,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    reverify = two_factor_service.require_recent_verification(db, c, request, user_id)
    if reverify is not None:
        return to_response(reverify)
    return {"status": "idle"}


@router.post("/two-factor/disable")
def two_factor_disable(
    request: Request,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    return to_response(two_factor_service.disable(db, c, request, user_id=user_id))
