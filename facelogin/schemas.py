import math
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from facelogin.config import FACE_DESCRIPTOR_MIN_LENGTH


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# bcrypt input limit
MAX_PASSWORD_BYTES = 72


def check_face_descriptor(values: List[float]) -> List[float]:
    if len(values) < FACE_DESCRIPTOR_MIN_LENGTH:
        raise ValueError(
            f"Face descriptor is required and must be at least {FACE_DESCRIPTOR_MIN_LENGTH} elements"
        )
    if not all(math.isfinite(value) for value in values):
        raise ValueError("Face descriptor must contain only finite numbers")
    return values


# ── Auth ──────────────────────────────────────────────────────────────


class RegisterRequest(CamelModel):
    name: str
    username: str
    password: str = Field(min_length=6)
    face_descriptor: List[float]

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode()) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value

    @field_validator("name")
    @classmethod
    def name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    @field_validator("username")
    @classmethod
    def username_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("Username must be at least 3 characters")
        return value

    @field_validator("face_descriptor")
    @classmethod
    def descriptor_length(cls, value: List[float]) -> List[float]:
        return check_face_descriptor(value)


class LoginRequest(CamelModel):
    username: str
    password: str = Field(min_length=1)

    @field_validator("username")
    @classmethod
    def username_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Username is required")
        return value


class FaceLoginRequest(CamelModel):
    face_descriptor: List[float]

    @field_validator("face_descriptor")
    @classmethod
    def descriptor_length(cls, value: List[float]) -> List[float]:
        return check_face_descriptor(value)


class UserOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    name: str
    username: str


class AuthResponse(CamelModel):
    token: str
    user: UserOut


class MeResponse(CamelModel):
    user: UserOut


# ── Activity ──────────────────────────────────────────────────────────


class ActivityLogCreate(CamelModel):
    action: str = Field(min_length=1)
    page: Optional[str] = None
    details: Optional[Any] = None


class ActivityLogOut(CamelModel):
    id: int
    user: str
    action: str
    page: Optional[str] = None
    details: Optional[Any] = None
    timestamp: datetime


class ActivitySummary(CamelModel):
    total: int
    logins: int
    active_users: int


# ── Face descriptor extraction ────────────────────────────────────────


class DescriptorResponse(CamelModel):
    face_descriptor: List[float]
