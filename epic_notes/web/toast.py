from __future__ import annotations

import base64
import binascii
import json
from typing import List, Literal, Optional, Tuple, TypedDict

from starlette.requests import Request
from starlette.responses import Response

from epic_notes.core.cookie_session import set_cookie_values
from epic_notes.web.flow import Header


ToastType = Literal["message", "success", "error"]

TOAST_COOKIE = "en_toast"


class Toast(TypedDict, total=False):
    title: str
    description: str
    type: ToastType


def _b64url_encode(data: bytes) -> str:
    s = base64.urlsafe_b64encode(data).decode("ascii")
    return s.rstrip("=")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def set_toast_cookie(
    resp: Response,
    *,
    description: str,
    type: ToastType = "message",
    title: Optional[str] = None,
    secure: bool = False,
    max_age_seconds: int = 20,
) -> None:
    """Schreibt genau eine Toast-Nachricht in ein Cookie.

    Das Cookie ist NICHT httponly, damit die UI es per JS lesen und danach loeschen kann.
    Es enthaelt keine sensitiven Daten.
    """
    payload = {"type": type, "description": description}
    if title:
        payload["title"] = title

    raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    value = _b64url_encode(raw)

    resp.set_cookie(
        key=TOAST_COOKIE,
        value=value,
        max_age=max_age_seconds,
        path="/",
        httponly=False,
        samesite="lax",
        secure=secure,
    )


def _set_cookie_headers(resp: Response) -> List[Header]:
    return [("set-cookie", value) for value in set_cookie_values(resp)]


def create_toast_headers(toast: Toast, *, secure: bool = False) -> List[Header]:
    """Toast als Set-Cookie-Header für Redirects/Replies der Auth-Flows."""
    resp = Response()
    set_toast_cookie(
        resp,
        description=toast.get("description", ""),
        type=toast.get("type", "message"),
        title=toast.get("title"),
        secure=secure,
    )
    return _set_cookie_headers(resp)


def get_toast(request: Request) -> Tuple[Optional[Toast], List[Header]]:
    """Liest den Toast (einmalig) und liefert die Header zum Löschen des Cookies."""
    raw = request.cookies.get(TOAST_COOKIE)
    if not raw:
        return None, []

    resp = Response()
    resp.delete_cookie(TOAST_COOKIE, path="/", samesite="lax")
    headers = _set_cookie_headers(resp)

    try:
        data = json.loads(_b64url_decode(raw).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None, headers
    if not isinstance(data, dict) or not isinstance(data.get("description"), str):
        return None, headers

    toast: Toast = {"description": data["description"], "type": data.get("type", "message")}
    if isinstance(data.get("title"), str):
        toast["title"] = data["title"]
    return toast, headers
