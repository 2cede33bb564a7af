"""JWT issuance, validation and refresh.

Tokens are signed with PyJWT using the configured secret and algorithm.
Refreshing is only allowed once a token is inside the last hour of its
validity, so a client cannot keep extending a fresh token indefinitely.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from pydantic import ValidationError as PydanticValidationError

from account_service.config import JWTSettings
from account_service.errors import ErrorCode, InternalError, InvalidTokenError, ValidationError
from account_service.schemas import TokenClaims, User

logger = logging.getLogger(__name__)

REFRESH_WINDOW = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and checks signed access tokens bound to a user identity."""

    def __init__(self, settings: JWTSettings) -> None:
        self._settings = settings

    @property
    def expiration(self) -> timedelta:
        return timedelta(minutes=self._settings.expiration_minutes)

    def _encode(self, user_id: int, email: str, role: str) -> str:
        now = _utcnow()
        payload: Dict[str, Any] = {
            "user_id": user_id,
            "email": email,
            "role": role,
            "exp": now + self.expiration,
            "iat": now,
            "nbf": now,
            "iss": self._settings.issuer,
            "sub": email,
        }
        try:
            return jwt.encode(payload, self._settings.secret, algorithm=self._settings.algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise InternalError("Failed to generate token", details=str(exc)) from exc

    def issue(self, user: User) -> str:
        """Return a signed token for ``user``."""
        if user.id is None:
            raise InternalError("Cannot issue a token for an unsaved user")
        return self._encode(user.id, user.email, user.role.value)

    def validate(self, token: str) -> TokenClaims:
        """Decode ``token`` and return its claims.

        Every failure (bad signature, expiry, malformed payload, wrong
        algorithm) is reported as :class:`InvalidTokenError`.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret,
                algorithms=[self._settings.algorithm],
                issuer=self._settings.issuer,
                options={"require": ["exp", "user_id"]},
                leeway=0,
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError() from exc

        try:
            return TokenClaims.model_validate(payload)
        except PydanticValidationError as exc:
            raise InvalidTokenError() from exc

    def remaining(self, claims: TokenClaims) -> timedelta:
        """Time left before ``claims`` expire."""
        return claims.exp - _utcnow()

    async def refresh(self, token: str) -> str:
        """Re-issue ``token`` if it expires within :data:`REFRESH_WINDOW`."""
        claims = self.validate(token)
        if self.remaining(claims) > REFRESH_WINDOW:
            raise ValidationError("Token is not close to expiration", code=ErrorCode.INVALID)
        logger.debug("Refreshing token for user %s", claims.user_id)
        return self._encode(claims.user_id, claims.email, claims.role.value)
