"""
Request schemas for the Auth service.
"""

import re
import uuid
from typing import Any, Dict, Optional, Type, TypeVar

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator
from pydantic_core import PydanticCustomError

from shared.errors import ValidationError

NAME_PATTERN = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑ\s]+$")

REQUIRED_MESSAGES = {
    "name": "Name is required",
    "lastname": "Last name is required",
    "email": "Email is required",
    "password": "Password is required",
    "refreshToken": "Refresh token is required",
}

FIELD_LABELS = {
    "name": "Name",
    "lastname": "Last name",
}


def _invalid(message: str) -> PydanticCustomError:
    return PydanticCustomError("invalid_field", message)


def _check_person_name(value: Any, field: str) -> str:
    label = FIELD_LABELS[field]
    if not isinstance(value, str):
        raise _invalid(f"{label} must be a string")
    if len(value) < 2:
        raise _invalid(f"{label} must be at least 2 characters long")
    if len(value) > 100:
        raise _invalid(f"{label} must be less than 100 characters long")
    if not NAME_PATTERN.match(value):
        raise _invalid(f"{label} can only contain letters and spaces")
    return value


def _check_email(value: Any, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise _invalid("Please provide a valid email address")
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise _invalid("Please provide a valid email address")
    if max_length and len(value) > max_length:
        raise _invalid(f"Email must be less than {max_length} characters long")
    return value


class RegisterRequest(BaseModel):
    """Registration payload."""

    model_config = ConfigDict(extra="forbid")

    name: Any
    lastname: Any
    email: Any
    password: Any
    role_id: Optional[Any] = None

    @field_validator("name", "lastname", mode="before")
    @classmethod
    def validate_names(cls, value, info):
        return _check_person_name(value, info.field_name)

    @field_validator("email", mode="before")
    @classmethod
    def validate_email_address(cls, value):
        return _check_email(value, max_length=255)

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, value):
        if not isinstance(value, str):
            raise _invalid("Password must be a string")
        if len(value) < 8:
            raise _invalid("Password must be at least 8 characters long")
        if len(value) > 128:
            raise _invalid("Password must be less than 128 characters long")
        return value

    @field_validator("role_id", mode="before")
    @classmethod
    def validate_role_id(cls, value):
        if value is None:
            return value
        try:
            return str(uuid.UUID(str(value)))
        except ValueError:
            raise _invalid("Role ID must be a valid UUID")


class LoginRequest(BaseModel):
    """Login payload."""

    email: Any
    password: Any

    @field_validator("email", mode="before")
    @classmethod
    def validate_email_address(cls, value):
        return _check_email(value)

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, value):
        if not isinstance(value, str) or not value:
            raise _invalid("Password is required")
        return value


class RefreshRequest(BaseModel):
    """Refresh payload."""

    refreshToken: Any

    @field_validator("refreshToken", mode="before")
    @classmethod
    def validate_refresh_token(cls, value):
        if not isinstance(value, str) or not value:
            raise _invalid("Refresh token is required")
        return value


class UpdateProfileRequest(BaseModel):
    """Profile update payload."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[Any] = None
    lastname: Optional[Any] = None
    active: Optional[bool] = None

    @field_validator("name", "lastname", mode="before")
    @classmethod
    def validate_names(cls, value, info):
        if value is None:
            return value
        return _check_person_name(value, info.field_name)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_payload(schema: Type[SchemaT], payload: Any) -> SchemaT:
    """Validate ``payload`` against ``schema`` collecting every field error.

    Raises ``ValidationError`` whose ``errors`` map field names to messages.
    """
    if not isinstance(payload, dict):
        raise ValidationError(errors={"body": "Request body must be a JSON object"})

    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        errors: Dict[str, str] = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "body"
            if error["type"] == "missing":
                message = REQUIRED_MESSAGES.get(field, f"{field} is required")
            elif error["type"] == "extra_forbidden":
                message = f"{field} is not allowed"
            else:
                message = error["msg"]
            errors.setdefault(field, message)
        raise ValidationError(errors=errors) from exc
