# epic_notes/services/password_reset_service.py
from __future__ import annotations

import logging
from typing import Optional, Union

from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.repositories import user_repo
from epic_notes.services import auth_service
from epic_notes.services.container import AuthContainer
from epic_notes.services.verification_registry import VerificationType, VerifyArgs
from epic_notes.services.verification_service import prepare_verification
from epic_notes.web.flow import FlowOutcome, RedirectTo, Reply, form_error, set_cookie

log = logging.getLogger(__name__)

# Key im Verifizierungs-Cookie: Benutzername, dessen Passwort gesetzt werden darf
RESET_PASSWORD_KEY = "resetPassword"


def start_password_reset(db: Session, c: AuthContainer, *, username_or_email: str) -> Union[RedirectTo, Reply]:
    """
    Schickt einen Reset-Code an die hinterlegte Adresse.
    Unbekannte Identifier -> Feldfehler, Versandfehler -> Formularfehler.
    """
    target = username_or_email.strip().lower()
    user = user_repo.get_by_identifier(db, target)
    if user is None:
        return form_error({"usernameOrEmail": ["No user exists with this email or username"]})

    prepared = prepare_verification(
        db,
        c,
        period=c.settings.VERIFICATION_PERIOD_SECONDS,
        type_=VerificationType.FORGOT_PASSWORD,
        target=target,
    )
    result = c.email.send(
        to=user.email,
        subject=f"{c.settings.APP_NAME} Password Reset",
        body=(
            f"Here is your verification code: {prepared['otp']}\n\n"
            f"Or open this link:\n{prepared['verify_url']}\n"
        ),
    )
    if result.status != "success":
        return form_error({"": [result.error or "Unable to send email"]})
    return RedirectTo(prepared["redirect_to"])


def handle_verification(args: VerifyArgs) -> FlowOutcome:
    """Verify-Handler für ``forgot-password``."""
    db, c, request, submission = args.db, args.container, args.request, args.submission

    user = user_repo.get_by_identifier(db, submission.target)
    if user is None:
        return form_error({"": ["Invalid code"]})

    verify_session = c.verify_storage.read(request)
    verify_session.set(RESET_PASSWORD_KEY, user.username)
    return RedirectTo("/reset-password", [set_cookie(c.verify_storage.commit_session(verify_session))])


def get_reset_username(c: AuthContainer, request: Request) -> Optional[str]:
    username = c.verify_storage.read(request).get(RESET_PASSWORD_KEY)
    return username if isinstance(username, str) and username else None


def complete_password_reset(
    db: Session,
    c: AuthContainer,
    request: Request,
    *,
    username: str,
    password: str,
) -> FlowOutcome:
    if not auth_service.reset_user_password(db, c, username=username, password=password):
        log.warning("Password reset for vanished user %s", username)
        return form_error({"": ["No user exists with this email or username"]})

    verify_session = c.verify_storage.read(request)
    return RedirectTo("/login", [set_cookie(c.verify_storage.destroy_session(verify_session))])
