# epic_notes/schemas/auth.py
from __future__ import annotations

from typing import Annotated, Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, ValidationInfo, field_validator
from pydantic import StringConstraints

from epic_notes.web.flow import Reply, form_error

# ---------- Gemeinsame Typen ----------
UsernameStr = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True,
        to_lower=True,
        min_length=3,
        max_length=20,
        pattern=r"^[a-zA-Z0-9_]+$",
    ),
]

PasswordStr = Annotated[str, StringConstraints(min_length=6, max_length=100)]

NameStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=40)]

TERMS_MESSAGE = "You must agree to the terms of service and privacy policy"


class FormModel(BaseModel):
    # Formularfelder heißen wie im Frontend (camelCase)
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _ConfirmPasswordMixin(FormModel):
    @field_validator("confirm_password", check_fields=False)
    @classmethod
    def _passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if "password" in info.data and v != info.data["password"]:
            raise ValueError("The passwords must match")
        return v


class _TermsMixin(FormModel):
    @field_validator("agree_to_terms", check_fields=False)
    @classmethod
    def _must_agree(cls, v: bool) -> bool:
        if not v:
            raise ValueError(TERMS_MESSAGE)
        return v


# ---------- Login / Signup ----------
class LoginForm(FormModel):
    username: UsernameStr
    password: PasswordStr
    remember: bool = False
    redirect_to: Optional[str] = Field(default=None, alias="redirectTo")


class SignupForm(FormModel):
    email: EmailStr


class OnboardingForm(_ConfirmPasswordMixin, _TermsMixin):
    username: UsernameStr
    name: NameStr
    password: PasswordStr
    confirm_password: PasswordStr = Field(alias="confirmPassword")
    agree_to_terms: bool = Field(default=False, alias="agreeToTermsOfServiceAndPrivacyPolicy", validate_default=True)
    remember: bool = False
    redirect_to: Optional[str] = Field(default=None, alias="redirectTo")


class ProviderOnboardingForm(_TermsMixin):
    username: UsernameStr
    name: NameStr
    agree_to_terms: bool = Field(default=False, alias="agreeToTermsOfServiceAndPrivacyPolicy", validate_default=True)
    remember: bool = False
    redirect_to: Optional[str] = Field(default=None, alias="redirectTo")


# ---------- Password-Reset ----------
class ForgotPasswordForm(FormModel):
    username_or_email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=100)] = Field(
        alias="usernameOrEmail"
    )


class ResetPasswordForm(_ConfirmPasswordMixin):
    password: PasswordStr
    confirm_password: PasswordStr = Field(alias="confirmPassword")


# ---------- Einstellungen ----------
class ProfileForm(FormModel):
    username: UsernameStr
    name: Optional[NameStr] = None


class ChangeEmailForm(FormModel):
    email: EmailStr


class TwoFactorCodeForm(FormModel):
    code: Annotated[str, StringConstraints(strip_whitespace=True, min_length=6, max_length=6)]


# ---------- Hilfsfunktionen ----------
M = TypeVar("M", bound=BaseModel)

_PREFIXES = ("Value error, ", "Assertion failed, ")


def _message(err: Mapping[str, Any]) -> str:
    msg = str(err.get("msg", "Invalid value"))
    for prefix in _PREFIXES:
        if msg.startswith(prefix):
            return msg[len(prefix):]
    return msg


def validation_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Pydantic-Fehler -> {feld: [meldungen]}; "" steht für formularweite Fehler."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        field = str(loc[0]) if loc else ""
        errors.setdefault(field, []).append(_message(err))
    return errors


def parse_form(model: Type[M], data: Mapping[str, Any]) -> Union[M, Reply]:
    # leere Strings wie fehlende Felder behandeln (HTML-Formulare schicken "")
    cleaned = {k: v for k, v in data.items() if v != ""}
    try:
        return model.model_validate(cleaned)
    except ValidationError as exc:
        return form_error(validation_errors(exc))
