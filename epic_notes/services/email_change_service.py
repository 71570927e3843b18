# epic_notes/services/email_change_service.py
from __future__ import annotations

import logging
from typing import Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.repositories import user_repo
from epic_notes.services.container import AuthContainer
from epic_notes.services.verification_registry import VerificationType, VerifyArgs
from epic_notes.services.verification_service import prepare_verification
from epic_notes.web.flow import FlowOutcome, RedirectTo, Reply, form_error, set_cookie
from epic_notes.web.toast import create_toast_headers

log = logging.getLogger(__name__)

# Key im Verifizierungs-Cookie
NEW_EMAIL_ADDRESS_KEY = "new-email-address"

EMAIL_IN_USE = "This email is already in use."


def start_email_change(
    db: Session,
    c: AuthContainer,
    request: Request,
    *,
    user_id: str,
    new_email: str,
) -> Union[RedirectTo, Reply]:
    """Code an die NEUE Adresse; die Adresse selbst wartet im Verify-Cookie."""
    new_email = new_email.lower()
    if not user_repo.is_email_available(db, new_email):
        return form_error({"email": [EMAIL_IN_USE]})

    prepared = prepare_verification(
        db,
        c,
        period=c.settings.VERIFICATION_PERIOD_SECONDS,
        type_=VerificationType.CHANGE_EMAIL,
        target=user_id,
    )
    result = c.email.send(
        to=new_email,
        subject=f"{c.settings.APP_NAME} Email Change Verification",
        body=(
            f"Here is your verification code: {prepared['otp']}\n\n"
            f"Or open this link:\n{prepared['verify_url']}\n"
        ),
    )
    if result.status != "success":
        return form_error({"": [result.error or "Unable to send email"]})

    verify_session = c.verify_storage.read(request)
    verify_session.set(NEW_EMAIL_ADDRESS_KEY, new_email)
    return RedirectTo(prepared["redirect_to"], [set_cookie(c.verify_storage.commit_session(verify_session))])


def handle_verification(args: VerifyArgs) -> FlowOutcome:
    """Verify-Handler für ``change-email``."""
    db, c, request, submission = args.db, args.container, args.request, args.submission

    verify_session = c.verify_storage.read(request)
    new_email = verify_session.get(NEW_EMAIL_ADDRESS_KEY)
    if not isinstance(new_email, str) or not new_email:
        return form_error({"": ["You must submit code on the same device that requested the change."]})

    user = user_repo.get_by_id(db, submission.target)
    if user is None:
        return form_error({"": ["Invalid code"]})
    previous_email = user.email

    try:
        user = user_repo.update_email(db, user.id, new_email)
    except IntegrityError:
        return form_error({"": [EMAIL_IN_USE]})
    if user is None:
        return form_error({"": ["Invalid code"]})

    # Hinweis an die alte Adresse; Fehler blockieren den Wechsel nicht
    notice = c.email.send(
        to=previous_email,
        subject=f"{c.settings.APP_NAME} Email Change Notice",
        body=f"Your {c.settings.APP_NAME} email has been changed. If you did not request this, contact support immediately.\n",
    )
    if notice.status != "success":
        log.warning("Email change notice to %s failed: %s", previous_email, notice.error)

    return RedirectTo(
        "/settings/profile",
        [
            set_cookie(c.verify_storage.destroy_session(verify_session)),
            *create_toast_headers(
                {"type": "success", "title": "Email changed", "description": f"Email changed to {user.email}"},
                secure=c.settings.is_production,
            ),
        ],
    )
