# epic_notes/repositories/verification_repo.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from epic_notes.models.verification import Verification

_FIELDS = ("secret", "algorithm", "digits", "period", "char_set", "expires_at")


def _not_expired(now: datetime):
    return or_(Verification.expires_at.is_(None), Verification.expires_at > now)


def upsert(db: Session, target: str, type_: str, data: dict[str, Any]) -> Verification:
    """Legt an oder überschreibt: höchstens eine offene Challenge pro (target, type)."""
    values = {k: data.get(k) for k in _FIELDS}
    rec = db.scalar(select(Verification).where(Verification.target == target, Verification.type == type_))
    if rec is None:
        rec = Verification(target=target, type=type_, **values)
        db.add(rec)
        try:
            db.commit()
        except IntegrityError:
            # paralleler Insert hat gewonnen -> dessen Zeile überschreiben
            db.rollback()
            rec = db.scalar(select(Verification).where(Verification.target == target, Verification.type == type_))
            if rec is None:
                raise
            for key, value in values.items():
                setattr(rec, key, value)
            db.commit()
    else:
        for key, value in values.items():
            setattr(rec, key, value)
        db.commit()
    db.refresh(rec)
    return rec


def find(db: Session, target: str, type_: str) -> Optional[Verification]:
    now = datetime.now(timezone.utc)
    stmt = select(Verification).where(
        Verification.target == target,
        Verification.type == type_,
        _not_expired(now),
    ).limit(1)
    return db.scalars(stmt).first()


def exists_for(db: Session, target: str, type_: str) -> bool:
    return find(db, target, type_) is not None


def delete_for(db: Session, target: str, type_: str) -> int:
    res = db.execute(delete(Verification).where(Verification.target == target, Verification.type == type_))
    db.commit()
    return res.rowcount or 0


def consume(db: Session, target: str, type_: str) -> bool:
    """Delete-if-exists: nur der Request, der die Zeile wirklich entfernt, gewinnt."""
    now = datetime.now(timezone.utc)
    res = db.execute(
        delete(Verification).where(
            Verification.target == target,
            Verification.type == type_,
            _not_expired(now),
        )
    )
    db.commit()
    return (res.rowcount or 0) == 1


def promote(db: Session, target: str, from_type: str, to_type: str) -> bool:
    """Schreibt eine bestätigte Challenge auf einen neuen Typ um (läuft dann nie ab)."""
    rec = find(db, target, from_type)
    if rec is None:
        return False
    db.execute(delete(Verification).where(Verification.target == target, Verification.type == to_type))
    rec.type = to_type
    rec.expires_at = None
    db.commit()
    return True


def delete_all_for_targets(db: Session, *targets: str) -> int:
    """Räumt alle Challenges eines Users auf (z. B. beim Löschen des Kontos)."""
    if not targets:
        return 0
    res = db.execute(delete(Verification).where(Verification.target.in_(targets)))
    db.commit()
    return res.rowcount or 0
