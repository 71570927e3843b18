"""
Tests for the TOTP engine
"""
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from epic_notes.services.totp_service import generate_totp, get_totp_auth_uri, verify_totp

# RFC 6238, Anhang B (SHA1, Secret "12345678901234567890")
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def _params(config):
    return {k: config[k] for k in ("secret", "algorithm", "digits", "period", "char_set")}


class TestGenerate:
    def test_returns_full_config(self):
        config = generate_totp(algorithm="SHA256", period=600)

        assert config["algorithm"] == "SHA256"
        assert config["period"] == 600
        assert config["digits"] == 6
        assert config["char_set"] == "0123456789"
        assert len(config["otp"]) == 6
        assert config["otp"].isdigit()

    def test_fresh_secret_per_call(self):
        assert generate_totp()["secret"] != generate_totp()["secret"]

    def test_decimal_codes_match_standard_totp(self):
        config = generate_totp(algorithm="SHA1", period=30)
        assert config["otp"] == pyotp.TOTP(config["secret"]).now()

    def test_custom_char_set(self):
        config = generate_totp(char_set="ABCDEF", digits=8)

        assert len(config["otp"]) == 8
        assert set(config["otp"]) <= set("ABCDEF")
        assert verify_totp(config["otp"], **_params(config))

    def test_rejects_non_positive_period(self):
        with pytest.raises(ValueError):
            generate_totp(period=0)


class TestVerify:
    def test_generated_code_verifies(self):
        config = generate_totp(algorithm="SHA512", period=60)
        assert verify_totp(config["otp"], **_params(config))

    def test_rfc6238_vector(self):
        at = datetime.fromtimestamp(59, tz=timezone.utc)
        assert verify_totp(
            "94287082",
            secret=RFC_SECRET,
            algorithm="SHA1",
            digits=8,
            period=30,
            window=0,
            for_time=at,
        )

    def test_wrong_code_is_false(self):
        config = generate_totp()
        wrong = "000000" if config["otp"] != "000000" else "111111"
        assert verify_totp(wrong, **_params(config)) is False

    def test_window_tolerates_one_step_of_drift(self):
        config = generate_totp(period=30)
        later = datetime.now(timezone.utc) + timedelta(seconds=30)
        much_later = datetime.now(timezone.utc) + timedelta(seconds=120)

        assert verify_totp(config["otp"], **_params(config), for_time=later)
        assert not verify_totp(config["otp"], **_params(config), for_time=much_later)

    def test_unknown_algorithm_never_raises(self):
        config = generate_totp()
        params = _params(config)
        params["algorithm"] = "MD5"
        assert verify_totp(config["otp"], **params) is False

    def test_malformed_secret_never_raises(self):
        config = generate_totp()
        params = _params(config)
        params["secret"] = "not base32 !!"
        assert verify_totp(config["otp"], **params) is False

    def test_wrong_length_is_false(self):
        config = generate_totp()
        assert verify_totp(config["otp"] + "1", **_params(config)) is False


def test_auth_uri_for_authenticator_apps():
    uri = get_totp_auth_uri(
        secret=RFC_SECRET,
        algorithm="SHA1",
        digits=6,
        period=30,
        account_name="kody@kcd.dev",
        issuer="Epic Notes",
    )

    assert uri.startswith("otpauth://totp/")
    assert f"secret={RFC_SECRET}" in uri
    assert "issuer=Epic%20Notes" in uri
