# epic_notes/services/onboarding_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.core.cookie_session import CommitOptions
from epic_notes.models.session import UserSession
from epic_notes.repositories import user_repo
from epic_notes.schemas.auth import OnboardingForm, ProviderOnboardingForm
from epic_notes.services import auth_service
from epic_notes.services.container import AuthContainer
from epic_notes.services.session_service import SESSION_KEY
from epic_notes.services.verification_registry import VerificationType, VerifyArgs
from epic_notes.services.verification_service import prepare_verification
from epic_notes.web.flow import FlowOutcome, RedirectTo, Reply, form_error, safe_redirect, set_cookie
from epic_notes.web.toast import create_toast_headers

log = logging.getLogger(__name__)

# Keys im Verifizierungs-Cookie
ONBOARDING_EMAIL_KEY = "onboardingEmail"
PREFILLED_PROFILE_KEY = "prefilledProfile"
PROVIDER_ID_KEY = "providerId"

USERNAME_TAKEN = "User already exists with this username"
EMAIL_TAKEN = "User already exists with this email"


# =============================================================================
# 📨 Schritt 1: E-Mail-Adresse bestätigen
# =============================================================================
def start_signup(db: Session, c: AuthContainer, *, email: str, redirect_to: Optional[str] = None) -> Union[RedirectTo, Reply]:
    email = email.lower()
    if not user_repo.is_email_available(db, email):
        return form_error({"email": [EMAIL_TAKEN]})

    prepared = prepare_verification(
        db,
        c,
        period=c.settings.VERIFICATION_PERIOD_SECONDS,
        type_=VerificationType.ONBOARDING,
        target=email,
        redirect_to=redirect_to,
    )
    result = c.email.send(
        to=email,
        subject=f"Welcome to {c.settings.APP_NAME}!",
        body=(
            "Welcome! Here is your verification code: "
            f"{prepared['otp']}\n\nOr open this link:\n{prepared['verify_url']}\n"
        ),
    )
    if result.status != "success":
        return form_error({"": [result.error or "Unable to send email"]})
    return RedirectTo(prepared["redirect_to"])


def handle_verification(args: VerifyArgs) -> RedirectTo:
    """Verify-Handler für ``onboarding``: bestätigte Adresse ins Verify-Cookie."""
    c, request, submission = args.container, args.request, args.submission
    verify_session = c.verify_storage.read(request)
    verify_session.set(ONBOARDING_EMAIL_KEY, submission.target)

    url = "/onboarding"
    if submission.redirect_to:
        url = f"{url}?{urlencode({'redirectTo': safe_redirect(submission.redirect_to)})}"
    return RedirectTo(url, [set_cookie(c.verify_storage.commit_session(verify_session))])


def get_onboarding_email(c: AuthContainer, request: Request) -> Optional[str]:
    email = c.verify_storage.read(request).get(ONBOARDING_EMAIL_KEY)
    return email if isinstance(email, str) and email else None


# =============================================================================
# 🧾 Schritt 2: Konto anlegen
# =============================================================================
def _finish(
    c: AuthContainer,
    request: Request,
    session: UserSession,
    *,
    remember: bool,
    redirect_to: Optional[str],
) -> RedirectTo:
    cookie_session = c.session_storage.read(request)
    cookie_session.set(SESSION_KEY, session.id)
    verify_session = c.verify_storage.read(request)
    return RedirectTo(
        safe_redirect(redirect_to),
        [
            set_cookie(
                c.session_storage.commit_session(
                    cookie_session,
                    CommitOptions(expires=session.expiration_date if remember else None),
                )
            ),
            set_cookie(c.verify_storage.destroy_session(verify_session)),
            *create_toast_headers(
                {"type": "success", "title": "Welcome", "description": "Thanks for signing up!"},
                secure=c.settings.is_production,
            ),
        ],
    )


def complete_onboarding(
    db: Session,
    c: AuthContainer,
    request: Request,
    *,
    email: str,
    form: OnboardingForm,
) -> FlowOutcome:
    if not user_repo.is_username_available(db, form.username):
        return form_error({"username": [USERNAME_TAKEN]})
    try:
        session = auth_service.signup(
            db,
            c,
            email=email,
            username=form.username,
            password=form.password,
            name=form.name,
        )
    except IntegrityError:
        log.info("Onboarding for %s lost a uniqueness race", email)
        return form_error({"": ["User already exists with this email/username"]})
    return _finish(c, request, session, remember=form.remember, redirect_to=form.redirect_to)


# =============================================================================
# 🐙 Onboarding über einen OAuth-Provider
# =============================================================================
@dataclass(frozen=True)
class ProviderOnboardingData:
    email: str
    provider_name: str
    provider_id: str
    prefilled: Dict[str, Any]


def get_provider_onboarding_data(
    c: AuthContainer, request: Request, provider_name: str
) -> Optional[ProviderOnboardingData]:
    if c.provider(provider_name) is None:
        return None
    verify_session = c.verify_storage.read(request)
    email = verify_session.get(ONBOARDING_EMAIL_KEY)
    provider_id = verify_session.get(PROVIDER_ID_KEY)
    if not isinstance(email, str) or not email or not isinstance(provider_id, str) or not provider_id:
        log.warning("Provider onboarding for %s without pending connection data", provider_name)
        return None
    prefilled = verify_session.get(PREFILLED_PROFILE_KEY)
    return ProviderOnboardingData(
        email=email,
        provider_name=provider_name,
        provider_id=provider_id,
        prefilled=prefilled if isinstance(prefilled, dict) else {},
    )


def complete_provider_onboarding(
    db: Session,
    c: AuthContainer,
    request: Request,
    *,
    data: ProviderOnboardingData,
    form: ProviderOnboardingForm,
) -> FlowOutcome:
    if not user_repo.is_username_available(db, form.username):
        return form_error({"username": ["A user already exists with this username"]})

    image = None
    # nur die vom Provider gelieferte Bild-URL, nie eine aus dem Formular
    image_url = data.prefilled.get("imageUrl")
    provider = c.provider(data.provider_name)
    if image_url and provider is not None:
        image = provider.download_image(image_url)

    try:
        session = auth_service.signup_with_connection(
            db,
            c,
            email=data.email,
            username=form.username,
            name=form.name,
            provider_id=data.provider_id,
            provider_name=data.provider_name,
            image=image,
        )
    except IntegrityError:
        log.info("Provider onboarding for %s lost a uniqueness race", data.email)
        return form_error({"": ["User already exists with this email/username"]})
    return _finish(c, request, session, remember=form.remember, redirect_to=form.redirect_to)
