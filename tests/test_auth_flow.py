"""
End-to-end tests for login, logout, onboarding, 2FA and password reset
"""
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from epic_notes.models.session import UserSession
from epic_notes.models.user import User
from epic_notes.repositories import verification_repo
from epic_notes.services.totp_service import generate_totp

PASSWORD = "kodylovesyou"


def _enable_2fa(db, user_id):
    config = generate_totp(algorithm="SHA1", period=30)
    verification_repo.upsert(
        db,
        user_id,
        "2fa",
        {
            "secret": config["secret"],
            "algorithm": config["algorithm"],
            "digits": config["digits"],
            "period": config["period"],
            "char_set": config["char_set"],
            "expires_at": None,
        },
    )
    return config


def _current_code(config):
    return generate_totp(
        algorithm=config["algorithm"],
        period=config["period"],
        digits=config["digits"],
        char_set=config["char_set"],
        secret=config["secret"],
    )["otp"]


class TestGuards:
    def test_protected_page_redirects_to_login(self, client):
        res = client.get("/settings/profile", params={"tab": "x"})

        assert res.status_code == 303
        location = urlparse(res.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query)["redirectTo"] == ["/settings/profile?tab=x"]

    def test_anonymous_only_page_redirects_home(self, client, user, login):
        assert login().status_code == 303

        res = client.get("/login")
        assert res.status_code == 303
        assert res.headers["location"] == "/"

    def test_root_loader(self, client, user, login):
        assert client.get("/").json()["user"] is None
        login()
        assert client.get("/").json()["user"]["username"] == "kody"


class TestLogin:
    def test_success_sets_browser_session_cookie(self, client, db, user, login):
        res = login(redirectTo="/settings/profile")

        assert res.status_code == 303
        assert res.headers["location"] == "/settings/profile"
        set_cookie = res.headers["set-cookie"]
        assert set_cookie.startswith("en_session=")
        assert "Max-Age" not in set_cookie and "expires" not in set_cookie.lower()
        assert db.query(UserSession).filter_by(user_id=user.id).count() == 1

    def test_remember_me_persists_cookie(self, client, user, login):
        res = login(remember="on")
        assert "expires=" in res.headers["set-cookie"]

    def test_wrong_password_and_unknown_user_look_the_same(self, client, user, login):
        wrong = login(password="not-the-password")
        unknown = login(username="nobody")

        assert wrong.status_code == unknown.status_code == 400
        assert wrong.json() == unknown.json()
        assert wrong.json()["errors"][""] == ["Invalid username or password"]

    def test_validation_errors(self, client):
        res = client.post("/login", data={"username": "a!", "password": ""})

        assert res.status_code == 400
        assert set(res.json()["errors"]) == {"username", "password"}

    def test_open_redirect_is_ignored(self, client, user, login):
        res = login(redirectTo="https://evil.example")
        assert res.headers["location"] == "/"

    def test_oauth_only_user_cannot_login_with_password(self, client, make_user, login):
        make_user("octo", password=None)
        assert login(username="octo").status_code == 400


class TestLogout:
    def test_logout_deletes_session_and_cookie(self, client, db, user, login):
        login()
        res = client.post("/logout")

        assert res.status_code == 303
        assert res.headers["location"] == "/"
        assert "Max-Age=0" in res.headers["set-cookie"]
        db.expire_all()
        assert db.query(UserSession).count() == 0
        assert client.get("/").json()["user"] is None

    def test_stale_cookie_forces_logout(self, client, db, user, login):
        login()
        db.query(UserSession).delete()
        db.commit()

        res = client.get("/settings/profile")
        assert res.status_code == 303
        assert res.headers["location"] == "/"
        assert "Max-Age=0" in res.headers["set-cookie"]

    def test_expired_session_is_invalid(self, client, db, user, login):
        login()
        db.query(UserSession).update({"expiration_date": datetime.now(timezone.utc) - timedelta(seconds=1)})
        db.commit()

        res = client.get("/settings/profile")
        assert res.status_code == 303
        assert res.headers["location"] == "/"


class TestTwoFactorLogin:
    def test_login_detours_through_verify(self, client, db, user, login):
        config = _enable_2fa(db, user.id)

        res = login(remember="on", redirectTo="/settings/profile")
        assert res.status_code == 303
        location = urlparse(res.headers["location"])
        assert location.path == "/verify"
        assert parse_qs(location.query) == {
            "type": ["2fa"],
            "target": [user.id],
            "redirectTo": ["/settings/profile"],
        }
        assert res.headers["set-cookie"].startswith("en_verification=")
        # noch nicht eingeloggt
        assert client.get("/").json()["user"] is None

        res = client.post(
            "/verify",
            data={"code": _current_code(config), "type": "2fa", "target": user.id, "redirectTo": "/settings/profile"},
        )
        assert res.status_code == 303
        assert res.headers["location"] == "/settings/profile"
        assert client.get("/").json()["user"]["id"] == user.id

        # 2FA-Secret bleibt nach der Anmeldung bestehen
        assert verification_repo.find(db, user.id, "2fa") is not None

    def test_wrong_code_keeps_user_logged_out(self, client, db, user, login):
        _enable_2fa(db, user.id)
        login()

        res = client.post("/verify", data={"code": "ZZZZZZ", "type": "2fa", "target": user.id})
        assert res.status_code == 400
        assert client.get("/").json()["user"] is None

    def test_missing_pending_session(self, client, db, user, login):
        config = _enable_2fa(db, user.id)
        login()
        db.query(UserSession).delete()
        db.commit()

        res = client.post("/verify", data={"code": _current_code(config), "type": "2fa", "target": user.id})
        assert res.status_code == 303
        assert res.headers["location"] == "/login"
        assert "en_toast=" in "".join(res.headers.get_list("set-cookie"))

    def test_fresh_verification_skips_prompt(self, client, db, user, login):
        config = _enable_2fa(db, user.id)
        login()
        client.post("/verify", data={"code": _current_code(config), "type": "2fa", "target": user.id})

        # erneuter Login innerhalb des Zeitfensters
        res = login()
        assert res.status_code == 303
        assert res.headers["location"] == "/"

    def test_fresh_verification_of_other_user_does_not_count(self, client, db, user, make_user, login):
        own = _enable_2fa(db, user.id)
        victim = make_user("victim")
        _enable_2fa(db, victim.id)

        login()
        client.post("/verify", data={"code": _current_code(own), "type": "2fa", "target": user.id})
        assert client.get("/").json()["user"]["id"] == user.id

        res = login(username="victim")
        assert res.status_code == 303
        location = urlparse(res.headers["location"])
        assert location.path == "/verify"
        assert parse_qs(location.query)["target"] == [victim.id]
        # weiterhin als eigener User eingeloggt, nicht als victim
        assert client.get("/").json()["user"]["id"] == user.id

    def test_abandoned_2fa_login_of_other_user_is_ignored(self, client, db, user, make_user, login):
        other = make_user("hannah")
        _enable_2fa(db, other.id)
        res = login(username="hannah")
        assert urlparse(res.headers["location"]).path == "/verify"

        res = login()
        assert res.status_code == 303
        assert res.headers["location"] == "/"
        assert client.get("/").json()["user"]["id"] == user.id

    def test_stale_verification_prompts_again(self, client, db, user, login, container):
        config = _enable_2fa(db, user.id)
        login()
        client.post("/verify", data={"code": _current_code(config), "type": "2fa", "target": user.id})

        container.settings.TWO_FA_FRESHNESS_SECONDS = 0
        time.sleep(0.05)
        res = login()
        assert urlparse(res.headers["location"]).path == "/verify"


class TestOnboarding:
    def test_signup_to_onboarding(self, client, db, email_sender):
        res = client.post("/signup", data={"email": "Kody@KCD.dev"})
        assert res.status_code == 303
        assert urlparse(res.headers["location"]).path == "/verify"
        assert email_sender.outbox[-1]["to"] == "kody@kcd.dev"

        res = client.post(
            "/verify",
            data={"code": email_sender.last_code(), "type": "onboarding", "target": "kody@kcd.dev"},
        )
        assert res.headers["location"] == "/onboarding"
        assert client.get("/onboarding").json() == {"email": "kody@kcd.dev"}

        res = client.post(
            "/onboarding",
            data={
                "username": "Kody",
                "name": "Kody Koala",
                "password": PASSWORD,
                "confirmPassword": PASSWORD,
                "agreeToTermsOfServiceAndPrivacyPolicy": "on",
                "remember": "on",
            },
        )
        assert res.status_code == 303
        assert res.headers["location"] == "/"
        cookies = "".join(res.headers.get_list("set-cookie"))
        assert "en_session=" in cookies
        assert "en_verification=" in cookies

        created = db.query(User).filter_by(username="kody").one()
        assert created.email == "kody@kcd.dev"
        assert [r.name for r in created.roles] == ["user"]
        assert client.get("/").json()["user"]["username"] == "kody"

    def test_signup_with_taken_email(self, client, user, email_sender):
        res = client.post("/signup", data={"email": user.email})

        assert res.status_code == 400
        assert res.json()["errors"]["email"] == ["User already exists with this email"]
        assert email_sender.outbox == []

    def test_email_failure_is_form_error(self, client, email_sender):
        email_sender.fail = True
        res = client.post("/signup", data={"email": "kody@kcd.dev"})

        assert res.status_code == 400
        assert res.json()["errors"][""]

    def test_onboarding_requires_verified_email(self, client):
        res = client.get("/onboarding")
        assert res.status_code == 303
        assert res.headers["location"] == "/signup"

    def test_onboarding_form_errors(self, client, email_sender, user):
        client.post("/signup", data={"email": "new@kcd.dev"})
        client.post("/verify", data={"code": email_sender.last_code(), "type": "onboarding", "target": "new@kcd.dev"})

        res = client.post(
            "/onboarding",
            data={"username": "kody", "name": "New", "password": PASSWORD, "confirmPassword": "different"},
        )
        assert res.status_code == 400
        errors = res.json()["errors"]
        assert errors["confirmPassword"] == ["The passwords must match"]
        assert errors["agreeToTermsOfServiceAndPrivacyPolicy"]

        res = client.post(
            "/onboarding",
            data={
                "username": "kody",
                "name": "New",
                "password": PASSWORD,
                "confirmPassword": PASSWORD,
                "agreeToTermsOfServiceAndPrivacyPolicy": "on",
            },
        )
        assert res.status_code == 400
        assert res.json()["errors"]["username"] == ["User already exists with this username"]


class TestPasswordReset:
    def test_reset_end_to_end(self, client, db, user, email_sender, login):
        res = client.post("/forgot-password", data={"usernameOrEmail": "kody"})
        assert res.status_code == 303
        assert email_sender.outbox[-1]["to"] == user.email

        res = client.post(
            "/verify",
            data={"code": email_sender.last_code(), "type": "forgot-password", "target": "kody"},
        )
        assert res.headers["location"] == "/reset-password"
        assert client.get("/reset-password").json() == {"resetPasswordUsername": "kody"}

        res = client.post("/reset-password", data={"password": "brand-new-pw", "confirmPassword": "brand-new-pw"})
        assert res.status_code == 303
        assert res.headers["location"] == "/login"

        assert login().status_code == 400
        assert login(password="brand-new-pw").status_code == 303

    def test_unknown_user(self, client, email_sender):
        res = client.post("/forgot-password", data={"usernameOrEmail": "nobody@kcd.dev"})

        assert res.status_code == 400
        assert res.json()["errors"]["usernameOrEmail"] == ["No user exists with this email or username"]
        assert email_sender.outbox == []

    def test_reset_page_requires_verification(self, client):
        res = client.get("/reset-password")
        assert res.status_code == 303
        assert res.headers["location"] == "/login"
