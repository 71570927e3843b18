# epic_notes/core/cookie_session.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, List, Literal, Optional, Sequence

from starlette.requests import Request
from starlette.responses import Response

from epic_notes.core.security import SignedPayloadCodec


@dataclass(frozen=True)
class CookieConfig:
    name: str
    secrets: Sequence[str]
    max_age: Optional[int] = None  # None = Browser-Session-Cookie
    path: str = "/"
    httponly: bool = True
    samesite: Literal["lax", "strict", "none"] = "lax"
    secure: bool = False


@dataclass(frozen=True)
class CommitOptions:
    expires: Optional[datetime] = None
    max_age: Optional[int] = None


@dataclass
class CookieSession:
    """Isolierter Key-Value-Beutel eines einzelnen Cookies."""

    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def unset(self, key: str) -> None:
        self.data.pop(key, None)

    def has(self, key: str) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def set_cookie_values(resp: Response) -> List[str]:
    """Set-Cookie-Werte, die Starlette an einer Response gesetzt hat."""
    return [
        value.decode("latin-1")
        for key, value in resp.raw_headers
        if key.lower() == b"set-cookie"
    ]


class CookieSessionStorage:
    """Signierter, httpOnly Cookie-Speicher.

    Jede Instanz hat Namen, Secrets und Lebensdauer aus ihrer ``CookieConfig``.
    ``commit_session`` und ``destroy_session`` liefern fertige Set-Cookie-Werte,
    die der Aufrufer an die Response hängt.
    """

    def __init__(self, config: CookieConfig):
        self.config = config
        self.codec = SignedPayloadCodec(config.secrets)

    @property
    def name(self) -> str:
        return self.config.name

    def get_session(self, raw: Optional[str] = None) -> CookieSession:
        if not raw:
            return CookieSession()
        data = self.codec.decode(raw)
        return CookieSession(dict(data) if data else {})

    def read(self, request: Request) -> CookieSession:
        return self.get_session(request.cookies.get(self.config.name))

    def commit_session(self, session: CookieSession, options: Optional[CommitOptions] = None) -> str:
        options = options or CommitOptions()
        max_age = options.max_age
        expires = _aware(options.expires) if options.expires is not None else None

        # Ohne explizite Option gilt die Lebensdauer aus der Config
        if expires is None and max_age is None and self.config.max_age is not None:
            max_age = self.config.max_age

        payload_exp = expires
        if max_age is not None:
            payload_exp = datetime.now(timezone.utc) + timedelta(seconds=max_age)

        cfg = self.config
        resp = Response()
        resp.set_cookie(
            key=cfg.name,
            value=self.codec.encode(session.data, expires=payload_exp),
            max_age=max_age,
            expires=expires,
            path=cfg.path,
            httponly=cfg.httponly,
            secure=cfg.secure,
            samesite=cfg.samesite,
        )
        return set_cookie_values(resp)[0]

    def destroy_session(self, session: Optional[CookieSession] = None) -> str:
        if session is not None:
            session.data.clear()
        cfg = self.config
        resp = Response()
        resp.delete_cookie(
            cfg.name,
            path=cfg.path,
            httponly=cfg.httponly,
            secure=cfg.secure,
            samesite=cfg.samesite,
        )
        return set_cookie_values(resp)[0]
