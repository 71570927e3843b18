# epic_notes/services/verification_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional, TypedDict, Union
from urllib.parse import urlencode

from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.repositories import verification_repo
from epic_notes.services.container import AuthContainer
from epic_notes.services.totp_service import generate_totp, verify_totp
from epic_notes.services.verification_registry import (
    PERSISTENT_TYPES,
    VERIFY_ENDPOINT_TYPES,
    VerificationType,
    VerifyArgs,
    VerifySubmission,
)
from epic_notes.web.flow import FlowOutcome, form_error

log = logging.getLogger(__name__)

# Query-/Formular-Parameter des Verify-Endpunkts
CODE_PARAM = "code"
TARGET_PARAM = "target"
TYPE_PARAM = "type"
REDIRECT_TO_PARAM = "redirectTo"

CODE_LENGTH = 6
EMAIL_CODE_ALGORITHM = "SHA256"

TypeLike = Union[VerificationType, str]


class PreparedVerification(TypedDict):
    otp: str
    redirect_to: str   # relativer Pfad zur Verify-Seite (ohne Code)
    verify_url: str    # absoluter Link inkl. Code für die E-Mail


def _type_value(type_: TypeLike) -> str:
    return type_.value if isinstance(type_, VerificationType) else str(type_)


def get_redirect_to_url(*, type_: TypeLike, target: str, redirect_to: Optional[str] = None) -> str:
    params = {TYPE_PARAM: _type_value(type_), TARGET_PARAM: target}
    if redirect_to:
        params[REDIRECT_TO_PARAM] = redirect_to
    return f"/verify?{urlencode(params)}"


def prepare_verification(
    db: Session,
    c: AuthContainer,
    *,
    period: int,
    type_: TypeLike,
    target: str,
    redirect_to: Optional[str] = None,
) -> PreparedVerification:
    """Erzeugt eine frische Challenge für (target, type) und überschreibt eine alte."""
    verify_path = get_redirect_to_url(type_=type_, target=target, redirect_to=redirect_to)

    config = generate_totp(algorithm=EMAIL_CODE_ALGORITHM, period=period)
    otp = config["otp"]

    verification_repo.upsert(
        db,
        target,
        _type_value(type_),
        {
            "secret": config["secret"],
            "algorithm": config["algorithm"],
            "digits": config["digits"],
            "period": config["period"],
            "char_set": config["char_set"],
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=config["period"]),
        },
    )

    base = c.settings.PUBLIC_BASE_URL.rstrip("/")
    verify_url = f"{base}{verify_path}&{urlencode({CODE_PARAM: otp})}"
    return {"otp": otp, "redirect_to": verify_path, "verify_url": verify_url}


def is_code_valid(db: Session, *, code: str, type_: TypeLike, target: str) -> bool:
    """False (kein Fehler), wenn kein gültiger Datensatz existiert oder der Code nicht passt."""
    rec = verification_repo.find(db, target, _type_value(type_))
    if rec is None:
        return False
    return verify_totp(
        code,
        secret=rec.secret,
        algorithm=rec.algorithm,
        digits=rec.digits,
        period=rec.period,
        char_set=rec.char_set,
    )


def parse_submission(params: Mapping[str, str]) -> Union[VerifySubmission, FlowOutcome]:
    errors: dict[str, list[str]] = {}

    code = (params.get(CODE_PARAM) or "").strip()
    target = (params.get(TARGET_PARAM) or "").strip()
    raw_type = (params.get(TYPE_PARAM) or "").strip()
    redirect_to = (params.get(REDIRECT_TO_PARAM) or "").strip() or None

    if len(code) != CODE_LENGTH:
        errors[CODE_PARAM] = [f"Code must be {CODE_LENGTH} characters"]
    if not target:
        errors[TARGET_PARAM] = ["Target is required"]

    type_: Optional[VerificationType] = None
    try:
        type_ = VerificationType(raw_type)
    except ValueError:
        pass
    if type_ is None or type_ not in VERIFY_ENDPOINT_TYPES:
        errors[TYPE_PARAM] = ["Invalid verification type"]

    if errors or type_ is None:
        return form_error(errors)
    return VerifySubmission(code=code, target=target, type=type_, redirect_to=redirect_to)


def validate_request(
    db: Session,
    c: AuthContainer,
    request: Request,
    params: Mapping[str, str],
) -> FlowOutcome:
    """Verify-Endpunkt: Code prüfen, Einmal-Challenge verbrauchen, Handler aufrufen."""
    parsed = parse_submission(params)
    if not isinstance(parsed, VerifySubmission):
        return parsed
    submission = parsed

    if not is_code_valid(db, code=submission.code, type_=submission.type, target=submission.target):
        return form_error({CODE_PARAM: ["Invalid code"]})

    # Einmal-Codes: nur wer die Zeile tatsächlich löscht, darf weiter
    if submission.type not in PERSISTENT_TYPES:
        if not verification_repo.consume(db, submission.target, submission.type.value):
            log.info("Verification %s/%s already consumed by a concurrent request", submission.type.value, submission.target)
            return form_error({CODE_PARAM: ["Invalid code"]})

    handler = c.verification_handlers.get(submission.type)
    return handler(VerifyArgs(db=db, container=c, request=request, submission=submission))
