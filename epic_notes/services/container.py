# epic_notes/services/container.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from epic_notes.core.config import Settings
from epic_notes.core.cookie_session import CookieConfig, CookieSessionStorage
from epic_notes.services.email_service import EmailSender
from epic_notes.services.providers.base import AuthProvider
from epic_notes.services.providers.github import GitHubProvider
from epic_notes.services.verification_registry import VerificationHandlerRegistry

SESSION_COOKIE = "en_session"
CONNECTION_COOKIE = "en_connection"
VERIFICATION_COOKIE = "en_verification"


@dataclass
class AuthContainer:
    """Explizit gebaute Abhängigkeiten des Auth-Kerns (liegt auf app.state)."""

    settings: Settings
    session_storage: CookieSessionStorage
    connection_storage: CookieSessionStorage
    verify_storage: CookieSessionStorage
    email: EmailSender
    providers: Dict[str, AuthProvider] = field(default_factory=dict)
    verification_handlers: VerificationHandlerRegistry = field(default_factory=VerificationHandlerRegistry)

    def provider(self, name: str) -> Optional[AuthProvider]:
        return self.providers.get(name)


def build_container(settings: Settings) -> AuthContainer:
    secrets = settings.session_secrets
    secure = settings.is_production
    flow_max_age = settings.FLOW_COOKIE_MAX_AGE_SECONDS

    # Import hier, damit das Registry-Modul keine Abhängigkeit auf Handler hat
    from epic_notes.services.verification_handlers import register_default_handlers

    container = AuthContainer(
        settings=settings,
        session_storage=CookieSessionStorage(
            CookieConfig(name=SESSION_COOKIE, secrets=secrets, secure=secure)
        ),
        connection_storage=CookieSessionStorage(
            CookieConfig(name=CONNECTION_COOKIE, secrets=secrets, max_age=flow_max_age, secure=secure)
        ),
        verify_storage=CookieSessionStorage(
            CookieConfig(name=VERIFICATION_COOKIE, secrets=secrets, max_age=flow_max_age, secure=secure)
        ),
        email=EmailSender(settings),
        providers={"github": GitHubProvider(settings)},
    )
    register_default_handlers(container.verification_handlers)
    return container
