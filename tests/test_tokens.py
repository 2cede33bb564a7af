from datetime import datetime, timedelta, timezone

import jwt
import pytest

from account_service.config import JWTSettings
from account_service.errors import ErrorCode, InternalError, InvalidTokenError, ValidationError
from account_service.schemas import Identity, Role, User
from account_service.tokens import TokenService


@pytest.fixture
def user():
    return User(id=7, email="alice@example.com", password="hash", name="Alice A", role=Role.ADMIN)


def test_issue_and_validate(tokens, user):
    claims = tokens.validate(tokens.issue(user))

    assert claims.user_id == 7
    assert claims.email == "alice@example.com"
    assert claims.role is Role.ADMIN
    assert claims.sub == "alice@example.com"
    assert claims.iss == "account-service"
    assert timedelta(hours=23) < tokens.remaining(claims) <= timedelta(hours=24)
    assert Identity.from_claims(claims) == Identity(user_id=7, email="alice@example.com", role=Role.ADMIN)


def test_issue_requires_saved_user(tokens):
    with pytest.raises(InternalError):
        tokens.issue(User(email="new@example.com", password="hash", name="New"))


def test_wrong_secret_rejected(tokens, user):
    other = TokenService(JWTSettings(secret="another-secret"))

    with pytest.raises(InvalidTokenError):
        tokens.validate(other.issue(user))


def test_wrong_issuer_rejected(tokens, user):
    other = TokenService(JWTSettings(secret="test-secret", issuer="someone-else"))

    with pytest.raises(InvalidTokenError):
        tokens.validate(other.issue(user))


def test_garbage_rejected(tokens):
    with pytest.raises(InvalidTokenError):
        tokens.validate("not.a.token")


def test_expired_token_rejected(tokens):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    token = jwt.encode(
        {"user_id": 7, "email": "a@example.com", "role": "user", "exp": past, "iss": "account-service"},
        "test-secret",
        algorithm="HS256",
    )

    with pytest.raises(InvalidTokenError, match="expired"):
        tokens.validate(token)


def test_missing_user_id_rejected(tokens):
    token = jwt.encode(
        {"email": "a@example.com", "exp": datetime.now(timezone.utc) + timedelta(hours=1), "iss": "account-service"},
        "test-secret",
        algorithm="HS256",
    )

    with pytest.raises(InvalidTokenError):
        tokens.validate(token)


@pytest.mark.asyncio
async def test_fresh_token_cannot_be_refreshed(tokens, user):
    with pytest.raises(ValidationError) as info:
        await tokens.refresh(tokens.issue(user))

    assert info.value.code is ErrorCode.INVALID
    assert "not close to expiration" in info.value.message


@pytest.mark.asyncio
async def test_token_near_expiry_is_refreshed(user):
    short = TokenService(JWTSettings(secret="test-secret", expiration_minutes=30))

    refreshed = await short.refresh(short.issue(user))

    claims = short.validate(refreshed)
    assert claims.user_id == 7
    assert claims.role is Role.ADMIN


@pytest.mark.asyncio
async def test_refresh_rejects_invalid_token(tokens):
    with pytest.raises(InvalidTokenError):
        await tokens.refresh("garbage")
