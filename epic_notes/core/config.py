# epic_notes/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,  # .env keys dürfen groß/klein geschrieben sein
        extra="ignore",
    )

    # ------------------------------------------------------------
    # 🧭 Allgemeine App-Einstellungen
    # ------------------------------------------------------------
    APP_NAME: str = "Epic Notes"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Komma-separierte Liste; der erste Eintrag signiert, alle verifizieren
    SESSION_SECRET: str = Field(..., min_length=16)

    # Basis-URL für Links (z. B. Verify-Link in E-Mails)
    PUBLIC_BASE_URL: str = "http://127.0.0.1:8000"

    # ------------------------------------------------------------
    # 🗄️ Datenbank
    # ------------------------------------------------------------
    DB_URL: str = "sqlite:///./epic_notes.db"

    # ------------------------------------------------------------
    # 🔐 Sessions / Verifizierung
    # ------------------------------------------------------------
    SESSION_EXPIRATION_DAYS: int = 30
    VERIFICATION_PERIOD_SECONDS: int = 10 * 60
    FLOW_COOKIE_MAX_AGE_SECONDS: int = 10 * 60
    TWO_FA_FRESHNESS_SECONDS: int = 2 * 60 * 60
    PASSWORD_SCHEME: str = "argon2"  # "argon2" | "bcrypt"

    # ------------------------------------------------------------
    # 🐙 GitHub OAuth
    # ------------------------------------------------------------
    GITHUB_CLIENT_ID: str = "MOCK_GITHUB_CLIENT_ID"
    GITHUB_CLIENT_SECRET: str = "MOCK_GITHUB_CLIENT_SECRET"
    GITHUB_REDIRECT_URI: str = "http://127.0.0.1:8000/auth/github/callback"

    # ------------------------------------------------------------
    # 📩 SMTP / Mail
    # ------------------------------------------------------------
    MAIL_FROM: str = "hello@epicstack.dev"
    MAIL_FROM_NAME: str = "Epic Notes"
    MAIL_SERVER: str | None = None
    MAIL_PORT: int = 587
    MAIL_USERNAME: str | None = None
    MAIL_PASSWORD: str | None = None
    MAIL_USE_TLS: bool = True

    @property
    def session_secrets(self) -> list[str]:
        return [s.strip() for s in self.SESSION_SECRET.split(",") if s.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"


# ------------------------------------------------------------
# Globale Settings-Instanz (nur main.py und Alembic lesen sie direkt)
# ------------------------------------------------------------
settings = Settings()
