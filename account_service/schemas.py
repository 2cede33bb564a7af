"""Pydantic models for the domain user, requests, responses and token claims.

The :class:`User` model is the object the repositories read and write; the
password it carries is always a hash once persisted and is never part of
:class:`UserResponse`.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class User(BaseModel):
    """A persisted account. ``id`` and timestamps are set by the repository."""

    model_config = ConfigDict(validate_assignment=True)

    id: Optional[int] = None
    email: str
    password: str
    name: str
    role: Role = Role.USER
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_response(self) -> "UserResponse":
        return UserResponse(
            id=self.id,
            email=self.email,
            name=self.name,
            role=self.role,
            active=self.active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r} role={self.role.value!r}>"


class UserResponse(BaseModel):
    """Public view of a user; deliberately has no password field."""

    model_config = ConfigDict(extra="forbid")

    id: Optional[int]
    email: str
    name: str
    role: Role
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserCreate(BaseModel):
    """Schema for user registration requests."""

    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
    name: str
    role: Optional[str] = None


class UserLogin(BaseModel):
    """Schema for login requests."""

    model_config = ConfigDict(extra="forbid")

    email: str
    password: str


class UserUpdate(BaseModel):
    """Partial update; omitted fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    role: Optional[str] = None
    active: Optional[bool] = None


class AuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    user: UserResponse


class TokenClaims(BaseModel):
    """Claims carried by an access token."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: Role
    exp: datetime
    iat: Optional[datetime] = None
    nbf: Optional[datetime] = None
    iss: Optional[str] = None
    sub: Optional[str] = None


class Identity(BaseModel):
    """The authenticated caller, passed explicitly into service operations."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: Role

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "Identity":
        return cls(user_id=claims.user_id, email=claims.email, role=claims.role)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class Pagination(BaseModel):
    """Page-based query parameters converted to offset/limit."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> "PageMeta":
        pages = (total + self.limit - 1) // self.limit
        return PageMeta(total=total, offset=self.offset, limit=self.limit, page=self.page, pages=pages)


class PageMeta(BaseModel):
    total: int
    offset: int
    limit: int
    page: int
    pages: int


class UserPage(BaseModel):
    """A slice of users plus the total count of all matching records."""

    items: List[UserResponse]
    total: int
    offset: int
    limit: int
