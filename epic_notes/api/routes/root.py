# epic_notes/api/routes/root.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from epic_notes.api.deps import get_container, get_optional_user_id
from epic_notes.db.database import get_db
from epic_notes.repositories import user_repo
from epic_notes.services.container import AuthContainer
from epic_notes.web.toast import get_toast

router = APIRouter(tags=["Root"])


@router.get("/")
def root(
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    c: AuthContainer = Depends(get_container),
):
    """Root-Loader: aktueller User (oder null) und ein offener Toast."""
    user = user_repo.get_by_id(db, user_id) if user_id else None
    toast, headers = get_toast(request)

    resp = JSONResponse(
        {
            "appName": c.settings.APP_NAME,
            "user": (
                {"id": user.id, "username": user.username, "name": user.name, "email": user.email}
                if user
                else None
            ),
            "toast": toast,
        }
    )
    for key, value in headers:
        resp.headers.append(key, value)
    return resp
