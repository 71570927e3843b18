# epic_notes/models/verification.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from epic_notes.db.database import Base


class Verification(Base):
    """Einmal-Challenge (TOTP-Parameter) pro (target, type).

    target ist je nach Zweck E-Mail, Benutzername oder User-ID.
    expires_at = NULL bedeutet: läuft nie ab (2FA-Secret).
    """

    __tablename__ = "verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    target: Mapped[str] = mapped_column(String(255), nullable=False)

    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(16), nullable=False)
    digits: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    char_set: Mapped[str] = mapped_column(String(64), nullable=False)

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("target", "type", name="ux_verifications_target_type"),
    )
