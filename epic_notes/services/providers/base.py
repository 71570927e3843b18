"""Schnittstelle zwischen dem OAuth-Connection-Flow und den konkreten Providern."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple


class ProviderAuthError(Exception):
    """Code-Austausch oder Profilabruf beim Provider fehlgeschlagen."""


@dataclass(frozen=True)
class ProviderUser:
    id: str
    email: Optional[str]
    username: Optional[str] = None
    name: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(frozen=True)
class ConnectionData:
    display_name: str
    link: Optional[str] = field(default=None)


class AuthProvider(Protocol):
    name: str
    label: str

    def authorization_url(self, state: str) -> str:
        ...

    def authenticate(self, code: str) -> ProviderUser:
        ...

    def resolve_connection_data(self, provider_id: str) -> ConnectionData:
        ...

    def download_image(self, url: str) -> Optional[Tuple[str, bytes]]:
        ...
