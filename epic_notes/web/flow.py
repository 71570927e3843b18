# epic_notes/web/flow.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

T = TypeVar("T")

Header = Tuple[str, str]


# =============================================================================
# Ergebnisse der Auth-Flows als Daten statt Exceptions
# =============================================================================
@dataclass(frozen=True)
class Continue(Generic[T]):
    value: T


@dataclass(frozen=True)
class RedirectTo:
    url: str
    headers: List[Header] = field(default_factory=list)

    def with_headers(self, extra: Sequence[Header]) -> "RedirectTo":
        return RedirectTo(self.url, [*self.headers, *extra])


@dataclass(frozen=True)
class Reply:
    """Formular-Antwort (z. B. Feldfehler) statt Redirect."""

    data: Dict[str, Any]
    status_code: int = 200
    headers: List[Header] = field(default_factory=list)


FlowOutcome = Union[Continue[Any], RedirectTo, Reply]


class FlowRedirect(Exception):
    """Nur für FastAPI-Dependencies: trägt ein RedirectTo bis zum Exception-Handler."""

    def __init__(self, outcome: RedirectTo):
        super().__init__(outcome.url)
        self.outcome = outcome


def set_cookie(value: str) -> Header:
    return ("set-cookie", value)


def form_error(errors: Dict[str, List[str]], *, status_code: int = 400, headers: Optional[List[Header]] = None) -> Reply:
    return Reply({"status": "error", "errors": errors}, status_code=status_code, headers=list(headers or []))


def safe_redirect(to: Optional[str], default: str = "/") -> str:
    """Nur relative Pfade derselben Origin (Open-Redirect-Schutz)."""
    if not to or not isinstance(to, str):
        return default
    to = to.strip()
    if not to.startswith("/") or to.startswith("//") or "\\" in to:
        return default
    return to


def to_response(outcome: FlowOutcome) -> Response:
    if isinstance(outcome, RedirectTo):
        resp: Response = RedirectResponse(url=outcome.url, status_code=303)
        headers = outcome.headers
    elif isinstance(outcome, Reply):
        resp = JSONResponse(outcome.data, status_code=outcome.status_code)
        headers = outcome.headers
    else:
        resp = JSONResponse(outcome.value)
        headers = []
    for key, value in headers:
        resp.headers.append(key, value)
    return resp
