# epic_notes/api/deps.py
from __future__ import annotations

from typing import Any, Dict, Optional, TypeVar, Union

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from epic_notes.db.database import get_db
from epic_notes.services import session_service
from epic_notes.services.container import AuthContainer
from epic_notes.web.flow import Continue, FlowRedirect, RedirectTo

T = TypeVar("T")


# ----------------------------------------------------------
# Container / Formulardaten
# ----------------------------------------------------------
def get_container(request: Request) -> AuthContainer:
    return request.app.state.container


async def get_form(request: Request) -> Dict[str, Any]:
    """Formular einmal asynchron lesen; synchrone Endpunkte bekommen ein dict."""
    form = await request.form()
    return {key: value for key, value in form.items()}


# ----------------------------------------------------------
# Zugriffsschutz (Redirects laufen über den FlowRedirect-Handler)
# ----------------------------------------------------------
def _unwrap(outcome: Union[Continue[T], RedirectTo]) -> T:
    if isinstance(outcome, RedirectTo):
        raise FlowRedirect(outcome)
    return outcome.value


def get_optional_user_id(
    request: Request,
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
) -> Optional[str]:
    return _unwrap(session_service.get_user_id(db, c, request))


def require_user_id(
    request: Request,
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
) -> str:
    return _unwrap(session_service.require_user_id(db, c, request))


def require_anonymous(
    request: Request,
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
) -> None:
    _unwrap(session_service.require_anonymous(db, c, request))
