"""
Tests for the signed cookie containers
"""
import http.cookies
from datetime import datetime, timedelta, timezone

from epic_notes.core.cookie_session import CommitOptions, CookieConfig, CookieSession, CookieSessionStorage
from epic_notes.core.security import SignedPayloadCodec


def _value(set_cookie: str, name: str) -> str:
    cookie = http.cookies.SimpleCookie()
    cookie.load(set_cookie)
    return cookie[name].value


def _storage(secrets=("first-secret-0123456789",), **kwargs) -> CookieSessionStorage:
    return CookieSessionStorage(CookieConfig(name="en_session", secrets=list(secrets), **kwargs))


def test_commit_and_read_back():
    storage = _storage()
    session = CookieSession()
    session.set("sessionId", "abc")
    session.set("verifiedTime", 1700000000)

    header = storage.commit_session(session)
    restored = storage.get_session(_value(header, "en_session"))

    assert restored.get("sessionId") == "abc"
    assert restored.get("verifiedTime") == 1700000000


def test_header_attributes():
    header = _storage().commit_session(CookieSession({"a": 1}))

    assert header.startswith("en_session=")
    assert "HttpOnly" in header
    assert "Path=/" in header
    assert "SameSite=lax" in header
    assert "Secure" not in header
    # ohne Optionen: Browser-Session-Cookie
    assert "Max-Age" not in header
    assert "expires" not in header.lower()


def test_secure_flag_in_production():
    header = _storage(secure=True).commit_session(CookieSession({"a": 1}))
    assert "Secure" in header


def test_tampered_cookie_reads_as_empty():
    storage = _storage()
    raw = _value(storage.commit_session(CookieSession({"sessionId": "abc"})), "en_session")
    tampered = raw[:-2] + ("AA" if not raw.endswith("AA") else "BB")

    assert storage.get_session(tampered).data == {}
    assert storage.get_session("garbage").data == {}
    assert storage.get_session(None).data == {}


def test_secret_rotation():
    old = _storage(secrets=("old-secret-0123456789",))
    raw = _value(old.commit_session(CookieSession({"sessionId": "abc"})), "en_session")

    rotated = _storage(secrets=("new-secret-0123456789", "old-secret-0123456789"))
    assert rotated.get_session(raw).get("sessionId") == "abc"

    # neue Cookies werden mit dem ersten Secret signiert
    fresh = _value(rotated.commit_session(CookieSession({"x": 1})), "en_session")
    assert old.get_session(fresh).data == {}


def test_expires_option_is_enforced_in_payload():
    storage = _storage()
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    header = storage.commit_session(CookieSession({"sessionId": "abc"}), CommitOptions(expires=past))

    assert "expires=" in header
    assert storage.get_session(_value(header, "en_session")).data == {}


def test_remembered_cookie_carries_expiry():
    storage = _storage()
    future = datetime.now(timezone.utc) + timedelta(days=30)
    header = storage.commit_session(CookieSession({"sessionId": "abc"}), CommitOptions(expires=future))

    assert future.strftime("%d %b %Y") in header
    assert storage.get_session(_value(header, "en_session")).get("sessionId") == "abc"


def test_config_max_age_is_default():
    storage = _storage(max_age=600)
    header = storage.commit_session(CookieSession({"oauth2:state": "xyz"}))

    assert "Max-Age=600" in header
    raw = _value(header, "en_session")
    assert SignedPayloadCodec(["first-secret-0123456789"]).decode(raw) == {"oauth2:state": "xyz"}


def test_destroy_clears_cookie():
    storage = _storage()
    session = CookieSession({"sessionId": "abc"})
    header = storage.destroy_session(session)

    assert header.startswith("en_session=")
    assert "Max-Age=0" in header
    assert "expires=" in header
    assert "HttpOnly" in header and "Path=/" in header
    assert _value(header, "en_session") == ""
    assert session.data == {}


def test_containers_are_isolated():
    primary = CookieSessionStorage(CookieConfig(name="en_session", secrets=["s-0123456789abcdef"]))
    verify = CookieSessionStorage(CookieConfig(name="en_verification", secrets=["s-0123456789abcdef"], max_age=600))

    primary_header = primary.commit_session(CookieSession({"sessionId": "abc"}))
    verify_header = verify.commit_session(CookieSession({"onboardingEmail": "kody@kcd.dev"}))

    assert primary_header.startswith("en_session=")
    assert verify_header.startswith("en_verification=")
    assert "onboardingEmail" not in primary.get_session(_value(primary_header, "en_session")).data
