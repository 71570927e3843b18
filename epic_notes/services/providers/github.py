"""GitHub als OAuth-Provider (Authlib + httpx)."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import OAuth2Client

from epic_notes.core.config import Settings
from epic_notes.services.providers.base import ConnectionData, ProviderAuthError, ProviderUser

log = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
API_BASE = "https://api.github.com"

MAX_IMAGE_BYTES = 3 * 1024 * 1024
MOCK_CODE_PREFIX = "MOCK_GITHUB_CODE_"


def _primary_email(emails: List[Dict[str, Any]]) -> Optional[str]:
    verified = [e for e in emails if e.get("verified")]
    for entry in verified:
        if entry.get("primary"):
            return entry.get("email")
    return verified[0].get("email") if verified else None


class GitHubProvider:
    name = "github"
    label = "GitHub"

    def __init__(self, settings: Settings):
        self.client_id = settings.GITHUB_CLIENT_ID
        self.client_secret = settings.GITHUB_CLIENT_SECRET
        self.redirect_uri = settings.GITHUB_REDIRECT_URI

    @property
    def is_mock(self) -> bool:
        return self.client_id.startswith("MOCK_")

    def _client(self) -> OAuth2Client:
        return OAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope="read:user user:email",
            redirect_uri=self.redirect_uri,
            timeout=10.0,
        )

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------
    def authorization_url(self, state: str) -> str:
        if self.is_mock:
            # Offline-Modus: direkt zurück auf den Callback
            query = urlencode({"code": f"{MOCK_CODE_PREFIX}KODY", "state": state})
            return f"/auth/{self.name}/callback?{query}"
        with self._client() as client:
            uri, _ = client.create_authorization_url(AUTHORIZE_URL, state=state)
        return uri

    def authenticate(self, code: str) -> ProviderUser:
        if self.is_mock:
            return self._mock_profile(code)
        try:
            with self._client() as client:
                client.fetch_token(TOKEN_URL, code=code)
                profile_resp = client.get(f"{API_BASE}/user")
                profile_resp.raise_for_status()
                profile = profile_resp.json()

                email = profile.get("email")
                if not email:
                    emails_resp = client.get(f"{API_BASE}/user/emails")
                    emails_resp.raise_for_status()
                    email = _primary_email(emails_resp.json())
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
            raise ProviderAuthError(f"GitHub authentication failed: {exc}") from exc

        if "id" not in profile:
            raise ProviderAuthError("GitHub profile without id")

        return ProviderUser(
            id=str(profile["id"]),
            email=email,
            username=profile.get("login"),
            name=profile.get("name") or profile.get("login"),
            image_url=profile.get("avatar_url"),
        )

    def _mock_profile(self, code: str) -> ProviderUser:
        if not code.startswith(MOCK_CODE_PREFIX):
            raise ProviderAuthError("invalid mock code")
        handle = code[len(MOCK_CODE_PREFIX):].lower() or "kody"
        provider_id = str(int(hashlib.sha256(handle.encode("utf-8")).hexdigest()[:8], 16))
        return ProviderUser(
            id=provider_id,
            email=f"{handle}@example.com",
            username=handle,
            name=handle.capitalize(),
            image_url=None,
        )

    # ------------------------------------------------------------------
    # Anzeige / Profilbild
    # ------------------------------------------------------------------
    def resolve_connection_data(self, provider_id: str) -> ConnectionData:
        if self.is_mock:
            return ConnectionData(display_name=provider_id, link=None)
        try:
            resp = httpx.get(f"{API_BASE}/user/{provider_id}", timeout=10.0)
            resp.raise_for_status()
            login = resp.json().get("login")
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("Could not resolve GitHub user %s: %s", provider_id, exc)
            login = None
        if not isinstance(login, str):
            return ConnectionData(display_name="Unknown", link=None)
        return ConnectionData(display_name=login, link=f"https://github.com/{login}")

    def download_image(self, url: str) -> Optional[Tuple[str, bytes]]:
        if self.is_mock or not url:
            return None
        try:
            resp = httpx.get(url, timeout=10.0, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Profile image download failed (%s): %s", url, exc)
            return None
        content_type = resp.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/") or len(resp.content) > MAX_IMAGE_BYTES:
            return None
        return content_type, resp.content
