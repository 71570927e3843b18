# epic_notes/services/totp_service.py
from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypedDict

import pyotp

log = logging.getLogger(__name__)

DEFAULT_CHAR_SET = "0123456789"
DEFAULT_DIGITS = 6
DEFAULT_WINDOW = 1  # ±1 Zeitschritt Toleranz gegen Uhrendrift

_ALGORITHMS: Dict[str, Callable[..., Any]] = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


class TOTPConfig(TypedDict):
    otp: str
    secret: str
    algorithm: str
    digits: int
    period: int
    char_set: str


def _digest_for(algorithm: str) -> Callable[..., Any]:
    key = (algorithm or "").upper().replace("-", "")
    try:
        return _ALGORITHMS[key]
    except KeyError:
        raise ValueError(f"unsupported TOTP algorithm: {algorithm!r}") from None


class CharSetTOTP(pyotp.TOTP):
    """RFC-6238-TOTP, dessen Zeichen aus einem frei wählbaren Zeichensatz stammen.

    Mit dem Dezimal-Zeichensatz sind die Codes identisch zu Standard-TOTP
    (Authenticator-Apps funktionieren). Andere Zeichensätze kodieren den
    gekürzten HMAC-Wert zur Basis len(char_set).
    """

    def __init__(self, s: str, *, char_set: str = DEFAULT_CHAR_SET, **kwargs: Any) -> None:
        if len(char_set) < 2 or len(set(char_set)) != len(char_set):
            raise ValueError("char_set needs at least two distinct characters")
        self.char_set = char_set
        super().__init__(s, **kwargs)

    def generate_otp(self, input: int) -> str:
        if input < 0:
            raise ValueError("input must be positive integer")
        hasher = hmac.new(self.byte_secret(), self.int_to_bytestring(input), self.digest)
        hmac_hash = bytearray(hasher.digest())
        offset = hmac_hash[-1] & 0xF
        code = (
            (hmac_hash[offset] & 0x7F) << 24
            | (hmac_hash[offset + 1] & 0xFF) << 16
            | (hmac_hash[offset + 2] & 0xFF) << 8
            | (hmac_hash[offset + 3] & 0xFF)
        )
        base = len(self.char_set)
        chars = []
        for _ in range(self.digits):
            code, idx = divmod(code, base)
            chars.append(self.char_set[idx])
        return "".join(reversed(chars))


def _build(secret: str, algorithm: str, digits: int, period: int, char_set: str) -> CharSetTOTP:
    return CharSetTOTP(
        secret,
        char_set=char_set,
        digits=int(digits),
        digest=_digest_for(algorithm),
        interval=int(period),
    )


def generate_totp(
    *,
    algorithm: str = "SHA1",
    period: int = 30,
    digits: int = DEFAULT_DIGITS,
    char_set: str = DEFAULT_CHAR_SET,
    secret: Optional[str] = None,
) -> TOTPConfig:
    """Erzeugt ein frisches Secret (außer es wird übergeben) und den aktuellen Code."""
    if period <= 0:
        raise ValueError("period must be positive")
    secret = secret or pyotp.random_base32()
    totp = _build(secret, algorithm, digits, period, char_set)
    return {
        "otp": totp.now(),
        "secret": secret,
        "algorithm": algorithm.upper(),
        "digits": int(digits),
        "period": int(period),
        "char_set": char_set,
    }


def verify_totp(
    otp: str,
    *,
    secret: str,
    algorithm: str,
    digits: int,
    period: int,
    char_set: str = DEFAULT_CHAR_SET,
    window: int = DEFAULT_WINDOW,
    for_time: Optional[datetime] = None,
) -> bool:
    """True, wenn der Code im Fenster ±window liegt. Wirft nie für falsche Codes."""
    if not isinstance(otp, str) or len(otp) != int(digits):
        return False
    try:
        totp = _build(secret, algorithm, digits, period, char_set)
        return totp.verify(otp, for_time=for_time, valid_window=max(0, int(window)))
    except (ValueError, TypeError) as ex:
        # ungültige Parameter im Datensatz: wie ein falscher Code behandeln
        log.warning("TOTP verification with invalid parameters: %s", ex)
        return False


def get_totp_auth_uri(
    *,
    secret: str,
    algorithm: str,
    digits: int,
    period: int,
    account_name: str,
    issuer: str,
) -> str:
    """otpauth://-URI für QR-Codes in Authenticator-Apps."""
    totp = _build(secret, algorithm, digits, period, DEFAULT_CHAR_SET)
    return totp.provisioning_uri(name=account_name, issuer_name=issuer)
