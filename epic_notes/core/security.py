# epic_notes/core/security.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import jwt

# Passwörter: bevorzugt Argon2, Alt-Hashes (bcrypt_sha256) bleiben gültig
from passlib.hash import bcrypt_sha256, argon2

# =============================
# 🔐 Passwort-Hashing
# =============================

# bcrypt hat ein 72-Byte-Limit; wir kappen auf 64 Zeichen für bcrypt.
MAX_PWD_LEN_BCRYPT_SAFE = 64
BCRYPT_ROUNDS = 12


# --- Hash-Schema-Erkennung ohne passlib.identify (über Präfixe) ---
def _scheme_of(hash_str: str) -> str:
    if not hash_str:
        return "unknown"
    h = hash_str.lower()
    if h.startswith("$argon2"):                  # z. B. $argon2id$...
        return "argon2"
    if h.startswith("$bcrypt-sha256$"):         # passlib's bcrypt_sha256
        return "bcrypt"
    return "unknown"


def hash_password(password: str, scheme: str = "argon2") -> str:
    """
    Erzeugt einen gesalzenen, langsamen Passwort-Hash.
    - Standard: Argon2id
    - Alternativ: bcrypt_sha256 (Kostenfaktor 12)
    """
    if scheme.lower().strip() == "bcrypt":
        return bcrypt_sha256.using(rounds=BCRYPT_ROUNDS).hash(password[:MAX_PWD_LEN_BCRYPT_SAFE])
    return argon2.using(
        type="ID",            # Argon2id
        time_cost=2,          # Rechendurchläufe
        memory_cost=102_400,  # ~100 MiB
        parallelism=8,
    ).hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verifiziert ein Passwort gegen einen gespeicherten Hash.
    Kein Hash (OAuth-only User) oder unbekanntes Schema -> False.
    """
    if not password_hash:
        return False
    scheme = _scheme_of(password_hash)
    try:
        if scheme == "argon2":
            return argon2.verify(password, password_hash)
        if scheme == "bcrypt":
            return bcrypt_sha256.verify(password[:MAX_PWD_LEN_BCRYPT_SAFE], password_hash)
        return False
    except (ValueError, TypeError):
        # Kaputter Hash: keine Details leaken
        return False


# =============================
# 🪙 Signierte Cookie-Payloads
# =============================

ALGORITHM = "HS256"


class SignedPayloadCodec:
    """HS256-signierte Payloads mit Secret-Rotation.

    Der erste Secret signiert, alle Secrets werden beim Lesen probiert.
    Eine optionale Ablaufzeit landet als ``exp`` in der Payload und wird
    beim Dekodieren erzwungen.
    """

    def __init__(self, secrets: Sequence[str], algorithm: str = ALGORITHM):
        if not secrets:
            raise ValueError("at least one secret is required")
        self.secrets = list(secrets)
        self.algorithm = algorithm

    def encode(self, data: dict[str, Any], expires: Optional[datetime] = None) -> str:
        payload: dict[str, Any] = {"data": data}
        if expires is not None:
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=timezone.utc)
            payload["exp"] = int(expires.timestamp())
        return jwt.encode(payload, self.secrets[0], algorithm=self.algorithm)

    def decode(self, token: str) -> Optional[dict[str, Any]]:
        """Gibt die Daten zurück oder None (manipuliert, abgelaufen, fremder Key)."""
        for secret in self.secrets:
            try:
                payload = jwt.decode(token, secret, algorithms=[self.algorithm])
            except jwt.ExpiredSignatureError:
                return None
            except jwt.InvalidTokenError:
                continue
            data = payload.get("data")
            return data if isinstance(data, dict) else None
        return None
