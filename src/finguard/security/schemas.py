"""
FinGuard Request Schemas
Pydantic models validating login and registration input
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DISPOSABLE_EMAIL_DOMAINS = ("tempmail", "10minutemail", "guerrillamail", "mailinator")

COMMON_PASSWORDS = frozenset({
    "password", "123456", "qwerty", "letmein", "welcome",
    "monkey", "dragon", "baseball", "football", "mustang",
})

PERSONAL_PATTERNS = ("password", "123", "admin", "user")

PASSWORD_MIN_LENGTH = 12
PASSWORD_MAX_LENGTH = 128

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")
_SPECIAL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_E164 = re.compile(r"^\+?[1-9]\d{1,14}$")
_TWO_FACTOR = re.compile(r"^\d{6}$")


class RegistrationType(str, Enum):
    """Kind of account being opened"""
    CLIENT = "client"
    INVESTOR = "investor"
    BUSINESS = "business"


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class LoginRequest(_RequestModel):
    """Login credentials"""
    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)
    two_factor_code: Optional[str] = Field(default=None)
    remember_me: bool = Field(default=False)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("two_factor_code")
    @classmethod
    def validate_two_factor_code(cls, v: Optional[str]) -> Optional[str]:
        if v and not _TWO_FACTOR.match(v):
            raise ValueError("Two-factor code must be 6 digits")
        return v or None


def password_policy_errors(password: str) -> list:
    """Return the password policy violations, empty when the password is acceptable."""
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL.search(password):
        errors.append("Password must contain at least one special character")
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common")
    if any(pattern in password.lower() for pattern in PERSONAL_PATTERNS):
        errors.append("Password cannot contain personal information")
    return errors


class RegisterRequest(_RequestModel):
    """New account registration"""
    email: EmailStr = Field(..., max_length=255)
    password: str
    confirm_password: str
    phone: Optional[str] = Field(default=None, max_length=20)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    registration_type: RegistrationType = RegistrationType.CLIENT

    @field_validator("email")
    @classmethod
    def validate_email_domain(cls, v: str) -> str:
        domain = v.rsplit("@", 1)[-1].lower()
        if any(disposable in domain for disposable in DISPOSABLE_EMAIL_DOMAINS):
            raise ValueError("Invalid email domain")
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        errors = password_policy_errors(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v and not _E164.match(v):
            raise ValueError("Phone number must be in E.164 format")
        return v or None

    @field_validator("registration_type", mode="before")
    @classmethod
    def normalize_registration_type(cls, v):
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self
