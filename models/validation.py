"""
Input validation for the auth and profile forms.

Everything here runs before any call to Supabase: a payload that fails
validation never reaches the network.
"""

import re
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, ValidationError, field_validator

from app.schema import Role

MAX_INPUT_LENGTH = 1000
PASSWORD_MIN_LENGTH = 6
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")

M = TypeVar("M", bound=BaseModel)


def sanitize_input(value: Any) -> str:
    """Strip script blocks and markup from free text, trim it and cap its length."""
    if not isinstance(value, str):
        return ""
    cleaned = _SCRIPT_RE.sub("", value.strip())
    cleaned = _TAG_RE.sub("", cleaned)
    return cleaned[:MAX_INPUT_LENGTH]


def _check_full_name(value: str) -> str:
    name = sanitize_input(value)
    if len(name) < NAME_MIN_LENGTH:
        raise ValueError(f"Name must be at least {NAME_MIN_LENGTH} characters")
    if len(name) > NAME_MAX_LENGTH:
        raise ValueError("Name is too long")
    return name


class SignInCredentials(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def password_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required")
        return value


class SignUpCredentials(BaseModel):
    email: EmailStr
    password: str
    full_name: str
    role: Role

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        if len(value) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        return value

    @field_validator("full_name")
    @classmethod
    def full_name_length(cls, value: str) -> str:
        return _check_full_name(value)


class ProfileUpdate(BaseModel):
    # self-service fields only; role and active are not user editable
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = None
    email: Optional[EmailStr] = None

    @field_validator("full_name")
    @classmethod
    def full_name_length(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_full_name(value)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def _message(error: Dict[str, Any]) -> str:
    field = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "value_error" and "error" in error.get("ctx", {}):
        return str(error["ctx"]["error"])
    if error.get("type") == "missing":
        return f"{field or 'Value'} is required"
    if error.get("type") == "extra_forbidden":
        return f"{field} cannot be changed"
    if field == "email":
        return "Invalid email"
    if field == "role":
        return "Role must be trainer or client"
    return error.get("msg", "Invalid value")


def format_validation_errors(exc: ValidationError) -> Dict[str, str]:
    """Flatten a pydantic error into ``{field: message}``, first message per field."""
    errors: Dict[str, str] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        errors.setdefault(field, _message(error))
    return errors


def validate(schema: Type[M], data: Dict[str, Any]) -> Tuple[Optional[M], Dict[str, str]]:
    try:
        return schema.model_validate(data), {}
    except ValidationError as exc:
        return None, format_validation_errors(exc)
