# epic_notes/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

# --- Framework ---
from fastapi import FastAPI
from starlette.requests import Request

# --- Konfiguration / DB ---
from epic_notes.core.config import Settings, settings as default_settings
from epic_notes.db.database import init_models

# --- Auth-Kern ---
from epic_notes.services.container import AuthContainer, build_container
from epic_notes.web.flow import FlowRedirect, to_response

# --- Router ---
from epic_notes.api.routes import auth as auth_routes, profile as profile_routes, root as root_routes

log = logging.getLogger(__name__)


# =============================================================================
# Startup: Models registrieren
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_models()
    log.info("%s started (%s)", app.title, app.state.container.settings.APP_ENV)
    yield


# =============================================================================
# App-Factory
# =============================================================================
def create_app(settings: Optional[Settings] = None, container: Optional[AuthContainer] = None) -> FastAPI:
    settings = settings or default_settings

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container or build_container(settings)

    # Redirects aus Dependencies (requireUser / requireAnonymous) -> 303
    @app.exception_handler(FlowRedirect)
    async def flow_redirect_handler(request: Request, exc: FlowRedirect):
        return to_response(exc.outcome)

    # =========================================================================
    # Router registrieren
    # =========================================================================
    app.include_router(root_routes.router)      # /
    app.include_router(auth_routes.router)      # /login, /signup, /verify, /auth/...
    app.include_router(profile_routes.router)   # /settings/profile/...

    return app


app = create_app()
