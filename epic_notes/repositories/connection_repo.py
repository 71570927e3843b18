from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from epic_notes.models.connection import Connection


def get_by_provider(db: Session, provider_name: str, provider_id: str) -> Optional[Connection]:
    stmt = select(Connection).where(
        Connection.provider_name == provider_name,
        Connection.provider_id == provider_id,
    ).limit(1)
    return db.scalars(stmt).first()


def list_for_user(db: Session, user_id: str) -> List[Connection]:
    stmt = select(Connection).where(Connection.user_id == user_id).order_by(Connection.created_at)
    return list(db.scalars(stmt).all())


def count_for_user(db: Session, user_id: str) -> int:
    return int(db.scalar(select(func.count()).select_from(Connection).where(Connection.user_id == user_id)) or 0)


def add_connection(db: Session, *, user_id: str, provider_name: str, provider_id: str) -> Connection:
    rec = Connection(user_id=user_id, provider_name=provider_name, provider_id=provider_id)
    db.add(rec)
    db.flush()
    return rec


def create_connection(db: Session, *, user_id: str, provider_name: str, provider_id: str) -> Connection:
    rec = add_connection(db, user_id=user_id, provider_name=provider_name, provider_id=provider_id)
    db.commit()
    db.refresh(rec)
    return rec


def delete_for_user(db: Session, connection_id: str, user_id: str) -> int:
    res = db.execute(
        delete(Connection).where(Connection.id == connection_id, Connection.user_id == user_id)
    )
    db.commit()
    return res.rowcount or 0
