# epic_notes/services/verification_registry.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional

from sqlalchemy.orm import Session
from starlette.requests import Request

from epic_notes.web.flow import FlowOutcome

if TYPE_CHECKING:
    from epic_notes.services.container import AuthContainer


class VerificationType(str, Enum):
    ONBOARDING = "onboarding"
    FORGOT_PASSWORD = "forgot-password"
    CHANGE_EMAIL = "change-email"
    TWO_FA = "2fa"
    # interner Typ während der 2FA-Einrichtung; nicht über /verify erreichbar
    TWO_FA_VERIFY = "2fa-verify"


# Typen, die der Verify-Endpunkt annimmt
VERIFY_ENDPOINT_TYPES = (
    VerificationType.ONBOARDING,
    VerificationType.FORGOT_PASSWORD,
    VerificationType.CHANGE_EMAIL,
    VerificationType.TWO_FA,
)

# 2FA-Secrets bleiben bestehen, alles andere ist Einmal-Challenge
PERSISTENT_TYPES = frozenset({VerificationType.TWO_FA})


@dataclass(frozen=True)
class VerifySubmission:
    code: str
    target: str
    type: VerificationType
    redirect_to: Optional[str] = None


@dataclass
class VerifyArgs:
    db: Session
    container: "AuthContainer"
    request: Request
    submission: VerifySubmission


VerificationHandler = Callable[[VerifyArgs], FlowOutcome]


class VerificationHandlerRegistry:
    """Tabelle VerificationType -> Handler; wird einmal beim Start befüllt."""

    def __init__(self) -> None:
        self._handlers: Dict[VerificationType, VerificationHandler] = {}

    def register(self, type_: VerificationType, handler: VerificationHandler) -> None:
        if type_ in self._handlers:
            raise ValueError(f"handler for {type_.value!r} already registered")
        self._handlers[type_] = handler

    def get(self, type_: VerificationType) -> VerificationHandler:
        try:
            return self._handlers[type_]
        except KeyError:
            raise LookupError(f"no verification handler for {type_.value!r}") from None

    def __contains__(self, type_: object) -> bool:
        return type_ in self._handlers
