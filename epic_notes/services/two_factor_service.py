# epic_notes/services/two_factor_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, TypedDict

from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.models.user import User
from epic_notes.models.verification import Verification
from epic_notes.repositories import verification_repo
from epic_notes.services.auth_service import is_two_fa_fresh
from epic_notes.services.container import AuthContainer
from epic_notes.services.totp_service import generate_totp, get_totp_auth_uri, verify_totp
from epic_notes.services.verification_registry import VerificationType
from epic_notes.services.verification_service import get_redirect_to_url
from epic_notes.web.flow import FlowOutcome, RedirectTo, form_error
from epic_notes.web.toast import create_toast_headers

log = logging.getLogger(__name__)

TWO_FA = VerificationType.TWO_FA.value
TWO_FA_VERIFY = VerificationType.TWO_FA_VERIFY.value

# Authenticator-Apps erwarten SHA1 / 30 s / 6 Ziffern
APP_ALGORITHM = "SHA1"
APP_PERIOD = 30

TWO_FACTOR_PATH = "/settings/profile/two-factor"


class PendingSetup(TypedDict):
    otp_uri: str
    secret: str


def is_enabled(db: Session, user_id: str) -> bool:
    return verification_repo.exists_for(db, user_id, TWO_FA)


def _otp_uri(c: AuthContainer, user: User, rec: Verification) -> str:
    return get_totp_auth_uri(
        secret=rec.secret,
        algorithm=rec.algorithm,
        digits=rec.digits,
        period=rec.period,
        account_name=user.email,
        issuer=c.settings.APP_NAME,
    )


def get_pending_setup(db: Session, c: AuthContainer, user: User) -> Optional[PendingSetup]:
    rec = verification_repo.find(db, user.id, TWO_FA_VERIFY)
    if rec is None:
        return None
    return {"otp_uri": _otp_uri(c, user, rec), "secret": rec.secret}


def start_enable(db: Session, c: AuthContainer, user: User) -> PendingSetup:
    """
    Neues Authenticator-Secret als ``2fa-verify`` ablegen (läuft nach
    VERIFICATION_PERIOD_SECONDS ab, falls die Bestätigung ausbleibt).
    """
    config = generate_totp(algorithm=APP_ALGORITHM, period=APP_PERIOD)
    rec = verification_repo.upsert(
        db,
        user.id,
        TWO_FA_VERIFY,
        {
            "secret": config["secret"],
            "algorithm": config["algorithm"],
            "digits": config["digits"],
            "period": config["period"],
            "char_set": config["char_set"],
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=c.settings.VERIFICATION_PERIOD_SECONDS),
        },
    )
    return {"otp_uri": _otp_uri(c, user, rec), "secret": rec.secret}


def confirm_enable(db: Session, c: AuthContainer, *, user_id: str, code: str) -> FlowOutcome:
    rec = verification_repo.find(db, user_id, TWO_FA_VERIFY)
    valid = rec is not None and verify_totp(
        code,
        secret=rec.secret,
        algorithm=rec.algorithm,
        digits=rec.digits,
        period=rec.period,
        char_set=rec.char_set,
    )
    if not valid or not verification_repo.promote(db, user_id, TWO_FA_VERIFY, TWO_FA):
        return form_error({"code": ["Invalid code"]})

    log.info("2FA enabled for user %s", user_id)
    return RedirectTo(
        TWO_FACTOR_PATH,
        create_toast_headers(
            {"type": "success", "title": "Enabled", "description": "Two-factor authentication has been enabled."},
            secure=c.settings.is_production,
        ),
    )


def require_recent_verification(
    db: Session,
    c: AuthContainer,
    request: Request,
    user_id: str,
) -> Optional[RedirectTo]:
    """Sensible Aktionen: bei 2FA-Nutzern ohne frische Bestätigung erst über /verify."""
    if not is_enabled(db, user_id) or is_two_fa_fresh(c, request, user_id):
        return None

    redirect_to = request.url.path
    if request.url.query:
        redirect_to = f"{redirect_to}?{request.url.query}"
    url = get_redirect_to_url(type_=VerificationType.TWO_FA, target=user_id, redirect_to=redirect_to)
    return RedirectTo(
        url,
        create_toast_headers(
            {"type": "message", "title": "Please Reverify", "description": "Please reverify your account before proceeding"},
            secure=c.settings.is_production,
        ),
    )


def disable(db: Session, c: AuthContainer, request: Request, *, user_id: str) -> RedirectTo:
    reverify = require_recent_verification(db, c, request, user_id)
    if reverify is not None:
        return reverify

    verification_repo.delete_for(db, user_id, TWO_FA)
    log.info("2FA disabled for user %s", user_id)
    return RedirectTo(
        TWO_FACTOR_PATH,
        create_toast_headers(
            {"type": "success", "title": "2FA Disabled", "description": "Two factor authentication has been disabled."},
            secure=c.settings.is_production,
        ),
    )
