"""
Tests for the verification store and the verify endpoint dispatch
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from epic_notes.models.verification import Verification
from epic_notes.repositories import verification_repo
from epic_notes.services import verification_service
from epic_notes.services.totp_service import generate_totp
from epic_notes.services.verification_registry import VerificationHandlerRegistry, VerificationType
from epic_notes.services.verification_service import (
    get_redirect_to_url,
    is_code_valid,
    prepare_verification,
    validate_request,
)
from epic_notes.web.flow import RedirectTo, Reply


def _record(db, target, type_, *, expires_in=600):
    config = generate_totp(algorithm="SHA256", period=600)
    verification_repo.upsert(
        db,
        target,
        type_,
        {
            "secret": config["secret"],
            "algorithm": config["algorithm"],
            "digits": config["digits"],
            "period": config["period"],
            "char_set": config["char_set"],
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        },
    )
    return config["otp"]


class TestRepository:
    def test_upsert_keeps_one_record_per_target_and_type(self, db):
        _record(db, "kody@kcd.dev", "onboarding")
        _record(db, "kody@kcd.dev", "onboarding")
        _record(db, "kody@kcd.dev", "forgot-password")

        assert db.query(Verification).filter_by(target="kody@kcd.dev", type="onboarding").count() == 1
        assert db.query(Verification).filter_by(target="kody@kcd.dev").count() == 2

    def test_expired_records_are_invisible(self, db):
        _record(db, "kody@kcd.dev", "onboarding", expires_in=-5)

        assert verification_repo.find(db, "kody@kcd.dev", "onboarding") is None
        assert verification_repo.consume(db, "kody@kcd.dev", "onboarding") is False

    def test_consume_only_succeeds_once(self, db):
        _record(db, "kody@kcd.dev", "onboarding")

        assert verification_repo.consume(db, "kody@kcd.dev", "onboarding") is True
        assert verification_repo.consume(db, "kody@kcd.dev", "onboarding") is False

    def test_promote_makes_record_permanent(self, db):
        _record(db, "user-1", "2fa-verify")

        assert verification_repo.promote(db, "user-1", "2fa-verify", "2fa") is True
        rec = verification_repo.find(db, "user-1", "2fa")
        assert rec is not None
        assert rec.expires_at is None
        assert verification_repo.find(db, "user-1", "2fa-verify") is None


class TestService:
    def test_prepare_verification(self, db, container):
        prepared = prepare_verification(
            db, container, period=600, type_="onboarding", target="kody@kcd.dev", redirect_to="/notes"
        )

        assert len(prepared["otp"]) == 6
        path = urlparse(prepared["redirect_to"])
        assert path.path == "/verify"
        assert parse_qs(path.query) == {"type": ["onboarding"], "target": ["kody@kcd.dev"], "redirectTo": ["/notes"]}

        link = urlparse(prepared["verify_url"])
        assert link.scheme in ("http", "https")
        assert parse_qs(link.query)["code"] == [prepared["otp"]]

        rec = verification_repo.find(db, "kody@kcd.dev", "onboarding")
        assert rec.algorithm == "SHA256"
        assert rec.period == 600

    def test_is_code_valid(self, db, container):
        prepared = prepare_verification(db, container, period=600, type_="onboarding", target="kody@kcd.dev")

        assert is_code_valid(db, code=prepared["otp"], type_="onboarding", target="kody@kcd.dev")
        assert not is_code_valid(db, code=prepared["otp"], type_="forgot-password", target="kody@kcd.dev")
        assert not is_code_valid(db, code=prepared["otp"], type_="onboarding", target="other@kcd.dev")

    def test_is_code_valid_without_record(self, db):
        assert is_code_valid(db, code="123456", type_="onboarding", target="nobody@kcd.dev") is False

    def test_redirect_url_without_redirect_to(self):
        assert get_redirect_to_url(type_="2fa", target="user-1") == "/verify?type=2fa&target=user-1"


class TestVerifyEndpoint:
    def test_invalid_code(self, client, db, container):
        prepare_verification(db, container, period=600, type_="onboarding", target="kody@kcd.dev")
        res = client.post("/verify", data={"code": "ABCDEF", "type": "onboarding", "target": "kody@kcd.dev"})

        assert res.status_code == 400
        assert res.json()["errors"]["code"] == ["Invalid code"]

    def test_field_validation(self, client):
        res = client.post("/verify", data={"code": "123", "type": "2fa-verify", "target": ""})

        assert res.status_code == 400
        errors = res.json()["errors"]
        assert set(errors) == {"code", "type", "target"}

    def test_code_is_single_use(self, client, db, container):
        prepared = prepare_verification(db, container, period=600, type_="onboarding", target="kody@kcd.dev")
        form = {"code": prepared["otp"], "type": "onboarding", "target": "kody@kcd.dev"}

        first = client.post("/verify", data=form)
        second = client.post("/verify", data=form)

        assert first.status_code == 303
        assert first.headers["location"] == "/onboarding"
        assert second.status_code == 400

    def test_link_with_code_verifies_on_get(self, client, db, container):
        prepared = prepare_verification(db, container, period=600, type_="onboarding", target="kody@kcd.dev")
        link = urlparse(prepared["verify_url"])

        res = client.get(f"{link.path}?{link.query}")

        assert res.status_code == 303
        assert res.headers["location"] == "/onboarding"
        assert "en_verification" in res.cookies

    def test_get_without_code_is_idle(self, client):
        res = client.get("/verify", params={"type": "onboarding", "target": "kody@kcd.dev"})
        assert res.json()["status"] == "idle"

    def test_concurrent_submissions_dispatch_once(self, db, container, monkeypatch):
        prepared = prepare_verification(db, container, period=600, type_="onboarding", target="kody@kcd.dev")
        form = {"code": prepared["otp"], "type": "onboarding", "target": "kody@kcd.dev"}

        # beide Requests haben den Code geprüft, bevor einer ihn verbraucht
        assert is_code_valid(db, code=prepared["otp"], type_="onboarding", target="kody@kcd.dev")
        assert is_code_valid(db, code=prepared["otp"], type_="onboarding", target="kody@kcd.dev")
        monkeypatch.setattr(verification_service, "is_code_valid", lambda *args, **kwargs: True)

        calls = []
        registry = VerificationHandlerRegistry()
        registry.register(VerificationType.ONBOARDING, lambda args: calls.append(args) or RedirectTo("/onboarding"))
        container.verification_handlers = registry

        first = validate_request(db, container, None, form)
        second = validate_request(db, container, None, form)

        assert isinstance(first, RedirectTo)
        assert len(calls) == 1
        assert isinstance(second, Reply)
        assert second.status_code == 400
        assert second.data["errors"]["code"] == ["Invalid code"]
