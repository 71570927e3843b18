# epic_notes/repositories/session_repo.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from epic_notes.models.session import UserSession


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def add_session(db: Session, user_id: str, expiration_date: datetime) -> UserSession:
    rec = UserSession(user_id=user_id, expiration_date=expiration_date)
    db.add(rec)
    db.flush()
    return rec


def create_session(db: Session, user_id: str, expiration_date: datetime) -> UserSession:
    rec = add_session(db, user_id, expiration_date)
    db.commit()
    db.refresh(rec)
    return rec


def get_valid_session(db: Session, session_id: str) -> Optional[UserSession]:
    """Nur nicht abgelaufene Sessions; Ablauf wird bei jedem Lesen geprüft."""
    stmt = select(UserSession).where(
        UserSession.id == session_id,
        UserSession.expiration_date > _now_utc(),
    ).limit(1)
    return db.scalars(stmt).first()


def delete_session(db: Session, session_id: str) -> int:
    """Best-effort: fehlende Sessions sind kein Fehler."""
    res = db.execute(delete(UserSession).where(UserSession.id == session_id))
    db.commit()
    return res.rowcount or 0


def delete_other_sessions(db: Session, user_id: str, keep_session_id: Optional[str]) -> int:
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    if keep_session_id:
        stmt = stmt.where(UserSession.id != keep_session_id)
    res = db.execute(stmt)
    db.commit()
    return res.rowcount or 0


def count_sessions(db: Session, user_id: str) -> int:
    return int(db.scalar(select(func.count()).select_from(UserSession).where(UserSession.user_id == user_id)) or 0)
