# epic_notes/api/routes/auth.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from epic_notes.api.deps import get_container, get_form, require_anonymous
from epic_notes.core.errors import not_found
from epic_notes.db.database import get_db
from epic_notes.schemas.auth import (
    ForgotPasswordForm,
    LoginForm,
    OnboardingForm,
    ProviderOnboardingForm,
    ResetPasswordForm,
    SignupForm,
    parse_form,
)
from epic_notes.services import (
    auth_service,
    connection_service,
    onboarding_service,
    password_reset_service,
    session_service,
    verification_service,
)
from epic_notes.services.container import AuthContainer
from epic_notes.services.providers.base import AuthProvider
from epic_notes.web.flow import RedirectTo, Reply, form_error, safe_redirect, to_response

router = APIRouter(tags=["Auth"])


def _provider_or_404(c: AuthContainer, provider_name: str) -> AuthProvider:
    provider = c.provider(provider_name)
    if provider is None:
        not_found("PROVIDER_NOT_FOUND", f"Unknown provider {provider_name!r}")
    return provider


# ============================================================
# Login / Logout
# ============================================================
@router.get("/login", dependencies=[Depends(require_anonymous)])
def login_page(redirect_to: Optional[str] = Query(default=None, alias="redirectTo")):
    return {"status": "idle", "redirectTo": safe_redirect(redirect_to, default="") or None}


@router.post("/login")
def login(
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    data = parse_form(LoginForm, form)
    if isinstance(data, Reply):
        return to_response(data)

    session = auth_service.login(db, c, username=data.username, password=data.password)
    if session is None:
        return to_response(form_error({"": [auth_service.INVALID_CREDENTIALS]}))

    return to_response(
        auth_service.handle_new_session(
            db, c, request, session=session, remember=data.remember, redirect_to=data.redirect_to
        )
    )


@router.get("/logout", include_in_schema=False)
def logout_page():
    return RedirectResponse(url="/", status_code=303)


@router.post("/logout")
def logout(
    request: Request,
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    return to_response(session_service.logout(db, c, request))


# ============================================================
# Signup + Onboarding (E-Mail)
# ============================================================
@router.get("/signup", dependencies=[Depends(require_anonymous)])
def signup_page():
    return {"status": "idle"}


@router.post("/signup")
def signup(
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    data = parse_form(SignupForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    redirect_to = form.get("redirectTo") if isinstance(form.get("redirectTo"), str) else None
    return to_response(onboarding_service.start_signup(db, c, email=data.email, redirect_to=redirect_to))


@router.get("/onboarding", dependencies=[Depends(require_anonymous)])
def onboarding_page(request: Request, c: AuthContainer = Depends(get_container)):
    email = onboarding_service.get_onboarding_email(c, request)
    if email is None:
        return RedirectResponse(url="/signup", status_code=303)
    return {"email": email}


@router.post("/onboarding", dependencies=[Depends(require_anonymous)])
def onboarding(
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    email = onboarding_service.get_onboarding_email(c, request)
    if email is None:
        return RedirectResponse(url="/signup", status_code=303)
    data = parse_form(OnboardingForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(onboarding_service.complete_onboarding(db, c, request, email=email, form=data))


@router.get("/onboarding/{provider_name}", dependencies=[Depends(require_anonymous)])
def provider_onboarding_page(
    provider_name: str,
    request: Request,
    c: AuthContainer = Depends(get_container),
):
    pending = onboarding_service.get_provider_onboarding_data(c, request, provider_name)
    if pending is None:
        return RedirectResponse(url="/signup", status_code=303)
    return {"status": "idle", "email": pending.email, "prefilledProfile": pending.prefilled}


@router.post("/onboarding/{provider_name}", dependencies=[Depends(require_anonymous)])
def provider_onboarding(
    provider_name: str,
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    pending = onboarding_service.get_provider_onboarding_data(c, request, provider_name)
    if pending is None:
        return RedirectResponse(url="/signup", status_code=303)
    data = parse_form(ProviderOnboardingForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(
        onboarding_service.complete_provider_onboarding(db, c, request, data=pending, form=data)
    )


# ============================================================
# Verify
# ============================================================
@router.get("/verify")
def verify_page(
    request: Request,
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    params = dict(request.query_params)
    # Link aus der E-Mail enthält den Code bereits
    if params.get(verification_service.CODE_PARAM):
        return to_response(verification_service.validate_request(db, c, request, params))
    return {
        "status": "idle",
        "type": params.get(verification_service.TYPE_PARAM),
        "target": params.get(verification_service.TARGET_PARAM),
        "redirectTo": params.get(verification_service.REDIRECT_TO_PARAM),
    }


@router.post("/verify")
def verify(
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    return to_response(verification_service.validate_request(db, c, request, form))


# ============================================================
# Passwort vergessen / zurücksetzen
# ============================================================
@router.get("/forgot-password", dependencies=[Depends(require_anonymous)])
def forgot_password_page():
    return {"status": "idle"}


@router.post("/forgot-password", dependencies=[Depends(require_anonymous)])
def forgot_password(
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    data = parse_form(ForgotPasswordForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(
        password_reset_service.start_password_reset(db, c, username_or_email=data.username_or_email)
    )


@router.get("/reset-password", dependencies=[Depends(require_anonymous)])
def reset_password_page(request: Request, c: AuthContainer = Depends(get_container)):
    username = password_reset_service.get_reset_username(c, request)
    if username is None:
        return RedirectResponse(url="/login", status_code=303)
    return {"resetPasswordUsername": username}


@router.post("/reset-password", dependencies=[Depends(require_anonymous)])
def reset_password(
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    username = password_reset_service.get_reset_username(c, request)
    if username is None:
        return RedirectResponse(url="/login", status_code=303)
    data = parse_form(ResetPasswordForm, form)
    if isinstance(data, Reply):
        return to_response(data)
    return to_response(
        password_reset_service.complete_password_reset(db, c, request, username=username, password=data.password)
    )


# ============================================================
# OAuth-Provider
# ============================================================
@router.get("/auth/{provider_name}", include_in_schema=False)
def provider_page(provider_name: str):
    return RedirectResponse(url="/login", status_code=303)


@router.post("/auth/{provider_name}")
def provider_start(
    provider_name: str,
    request: Request,
    form: Dict[str, Any] = Depends(get_form),
    c: AuthContainer = Depends(get_container),
):
    provider = _provider_or_404(c, provider_name)
    redirect_to = form.get("redirectTo") if isinstance(form.get("redirectTo"), str) else None
    return to_response(connection_service.start_connection(c, request, provider, redirect_to=redirect_to))


@router.get("/auth/{provider_name}/callback")
def provider_callback(
    provider_name: str,
    request: Request,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    provider = _provider_or_404(c, provider_name)
    outcome: RedirectTo = connection_service.handle_callback(db, c, request, provider, code=code, state=state)
    return to_response(outcome)
