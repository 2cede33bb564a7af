"""Account business rules on top of a :class:`UserRepository`.

The service never touches storage directly and only reasons about the
domain error taxonomy. The authenticated caller is passed in explicitly as
an :class:`Identity`.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from account_service.errors import (
    AlreadyExistsError,
    ErrorCode,
    ForbiddenError,
    InternalError,
    InvalidPasswordError,
    NotFoundError,
    ValidationError,
)
from account_service.repository.base import UserRepository
from account_service.schemas import (
    AuthResponse,
    Identity,
    Role,
    User,
    UserCreate,
    UserLogin,
    UserPage,
    UserResponse,
    UserUpdate,
)
from account_service.security import get_password_hash, verify_password
from account_service.tokens import TokenService

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 8
MAX_PAGE_SIZE = 100


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _requested_role(role: Optional[str]) -> Role:
    """Honour an explicit ``user``/``admin`` request; anything else is ``user``."""
    if role in (Role.ADMIN.value, Role.USER.value):
        return Role(role)
    return Role.USER


class UserService:
    """Registration, login and account management."""

    def __init__(self, repository: UserRepository, tokens: TokenService) -> None:
        self.repository = repository
        self.tokens = tokens

    # -- validation -------------------------------------------------------

    @staticmethod
    def _validate_registration(request: UserCreate) -> None:
        if not request.email.strip():
            raise ValidationError("is required", field="email")
        name = request.name.strip()
        if not name:
            raise ValidationError("is required", field="name")
        if len(name) < MIN_NAME_LENGTH:
            raise ValidationError(f"must be at least {MIN_NAME_LENGTH} characters", field="name")
        if len(request.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"must be at least {MIN_PASSWORD_LENGTH} characters", field="password")

    @staticmethod
    def _validate_page(offset: int, limit: int) -> None:
        if offset < 0:
            raise ValidationError("must not be negative", field="offset")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"must be between 1 and {MAX_PAGE_SIZE}", field="limit")

    @staticmethod
    def _require_admin(actor: Identity) -> None:
        if not actor.is_admin:
            raise ForbiddenError("Admin access required")

    @staticmethod
    def _apply_name(user: User, name: str) -> None:
        name = name.strip()
        if not name:
            raise ValidationError("cannot be empty", field="name")
        user.name = name

    # -- self service -----------------------------------------------------

    async def register(self, request: UserCreate) -> UserResponse:
        """Create an account; the returned profile never carries the password."""
        self._validate_registration(request)
        email = normalize_email(request.email)

        try:
            await self.repository.get_by_email(email)
        except NotFoundError:
            pass
        else:
            raise AlreadyExistsError()

        try:
            password_hash = get_password_hash(request.password)
        except (ValueError, TypeError) as exc:
            raise InternalError("Failed to hash password", details=str(exc)) from exc

        user = User(
            email=email,
            password=password_hash,
            name=request.name.strip(),
            role=_requested_role(request.role),
            active=True,
        )
        await self.repository.create(user)
        logger.info("Registered user %s", user.id)
        return user.to_response()

    async def login(self, request: UserLogin) -> AuthResponse:
        """Authenticate and issue a token.

        An unknown email and a wrong password both raise
        :class:`InvalidPasswordError` so callers cannot tell which emails
        are registered. A deactivated account raises :class:`ForbiddenError`.
        """
        if not request.email.strip():
            raise ValidationError("is required", field="email")
        if not request.password:
            raise ValidationError("is required", field="password")

        try:
            user = await self.repository.get_by_email(normalize_email(request.email))
        except NotFoundError as exc:
            raise InvalidPasswordError() from exc

        if not user.active:
            raise ForbiddenError("Account is deactivated")
        if not verify_password(request.password, user.password):
            raise InvalidPasswordError()

        token = self.tokens.issue(user)
        logger.info("User %s logged in", user.id)
        return AuthResponse(token=token, user=user.to_response())

    async def refresh(self, token: str) -> str:
        return await self.tokens.refresh(token)

    async def get_profile(self, identity: Identity) -> UserResponse:
        user = await self.repository.get_by_id(identity.user_id)
        return user.to_response()

    async def update_profile(self, identity: Identity, request: UserUpdate) -> UserResponse:
        """Update the caller's own name; role and active are not self-service."""
        user = await self.repository.get_by_id(identity.user_id)
        if request.name is not None:
            self._apply_name(user, request.name)
        await self.repository.update(user)
        return user.to_response()

    # -- admin ------------------------------------------------------------

    async def get_user(self, actor: Identity, user_id: int) -> UserResponse:
        self._require_admin(actor)
        user = await self.repository.get_by_id(user_id)
        return user.to_response()

    @staticmethod
    def _page(result: Tuple[List[User], int], offset: int, limit: int) -> UserPage:
        users, total = result
        return UserPage(items=[u.to_response() for u in users], total=total, offset=offset, limit=limit)

    async def list_users(self, actor: Identity, offset: int = 0, limit: int = 10) -> UserPage:
        self._require_admin(actor)
        self._validate_page(offset, limit)
        return self._page(await self.repository.list(offset, limit), offset, limit)

    async def search_users(self, actor: Identity, query: str, offset: int = 0, limit: int = 10) -> UserPage:
        """Substring search on name or email; a blank query lists everyone."""
        if not query.strip():
            return await self.list_users(actor, offset, limit)
        self._require_admin(actor)
        self._validate_page(offset, limit)
        return self._page(await self.repository.search(query, offset, limit), offset, limit)

    async def update_user(self, actor: Identity, user_id: int, request: UserUpdate) -> UserResponse:
        self._require_admin(actor)
        if user_id == actor.user_id:
            raise ValidationError("Cannot update your own account via admin endpoint", code=ErrorCode.INVALID)

        user = await self.repository.get_by_id(user_id)
        if request.name is not None:
            self._apply_name(user, request.name)
        if request.role is not None:
            if request.role not in (Role.USER.value, Role.ADMIN.value):
                raise ValidationError("must be 'user' or 'admin'", field="role")
            user.role = Role(request.role)
        if request.active is not None:
            user.active = request.active

        await self.repository.update(user)
        logger.info("User %s updated by admin %s", user_id, actor.user_id)
        return user.to_response()

    async def delete_user(self, actor: Identity, user_id: int) -> None:
        self._require_admin(actor)
        if user_id == actor.user_id:
            raise ValidationError("Cannot delete your own account", code=ErrorCode.INVALID)
        await self.repository.get_by_id(user_id)
        await self.repository.delete(user_id)
        logger.info("User %s deleted by admin %s", user_id, actor.user_id)
