"""FastAPI application exposing the account service over HTTP.

Routes live under ``/api/v1``:

- ``POST /auth/register`` and ``POST /auth/login`` return a token and the
  sanitised user;
- ``POST /auth/refresh`` re-issues a bearer token close to expiry;
- ``GET|PUT /auth/profile`` read or rename the caller's own account;
- ``/users`` (admin only) lists, searches, reads, updates and deletes users.

``GET /health`` reports database reachability. Every :class:`DomainError`
is rendered as ``{"success": false, "error": {...}}`` with its HTTP status.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from account_service.config import Settings
from account_service.database import Connection, open_connection
from account_service.errors import ConfigurationError, DomainError, ErrorCode, ForbiddenError, UnauthorizedError
from account_service.migrations import build_migrator
from account_service.repository import new_user_repository
from account_service.schemas import Identity, Pagination, UserCreate, UserLogin, UserUpdate
from account_service.service import UserService
from account_service.tokens import TokenService

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

bearer_scheme = HTTPBearer(auto_error=False)


def success(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


async def prepare_schema(connection: Connection, settings: Settings) -> None:
    """Refuse to start on a stale schema unless auto-migration is enabled."""
    migrator = build_migrator(connection)
    if settings.database.auto_migrate:
        await migrator.migrate()
        await migrator.seed(settings.env)
        return
    pending = await migrator.pending()
    if pending:
        versions = ", ".join(m.version for m in pending)
        raise ConfigurationError(
            f"database has pending migrations ({versions}); run 'account-service migrate' first"
        )


# -- dependencies ---------------------------------------------------------


def get_service(request: Request) -> UserService:
    return request.app.state.service


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Authorization header required")
    return credentials.credentials


def get_identity(
    token: str = Depends(get_bearer_token),
    service: UserService = Depends(get_service),
) -> Identity:
    return Identity.from_claims(service.tokens.validate(token))


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


def get_pagination(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> Pagination:
    return Pagination(page=page, limit=limit)


# -- routes ---------------------------------------------------------------

auth_router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/register", status_code=201)
async def register(payload: UserCreate, service: UserService = Depends(get_service)) -> Dict[str, Any]:
    """Create an account and log it in."""
    await service.register(payload)
    auth = await service.login(UserLogin(email=payload.email, password=payload.password))
    return success(auth.model_dump(mode="json"))


@auth_router.post("/login")
async def login(payload: UserLogin, service: UserService = Depends(get_service)) -> Dict[str, Any]:
    auth = await service.login(payload)
    return success(auth.model_dump(mode="json"))


@auth_router.post("/refresh")
async def refresh(
    token: str = Depends(get_bearer_token),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    return success({"token": await service.refresh(token)})


@auth_router.get("/profile")
async def get_profile(
    identity: Identity = Depends(get_identity),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    user = await service.get_profile(identity)
    return success(user.model_dump(mode="json"))


@auth_router.put("/profile")
async def update_profile(
    payload: UserUpdate,
    identity: Identity = Depends(get_identity),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    user = await service.update_profile(identity, payload)
    return success(user.model_dump(mode="json"))


@users_router.get("")
async def list_users(
    pagination: Pagination = Depends(get_pagination),
    admin: Identity = Depends(require_admin),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    page = await service.list_users(admin, pagination.offset, pagination.limit)
    items = [u.model_dump(mode="json") for u in page.items]
    return success(items, pagination.meta(page.total).model_dump())


@users_router.get("/search")
async def search_users(
    q: str = Query(..., min_length=1),
    pagination: Pagination = Depends(get_pagination),
    admin: Identity = Depends(require_admin),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    page = await service.search_users(admin, q, pagination.offset, pagination.limit)
    items = [u.model_dump(mode="json") for u in page.items]
    return success(items, pagination.meta(page.total).model_dump())


@users_router.get("/{user_id}")
async def get_user(
    user_id: int,
    admin: Identity = Depends(require_admin),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    user = await service.get_user(admin, user_id)
    return success(user.model_dump(mode="json"))


@users_router.put("/{user_id}")
async def update_user(
    user_id: int,
    payload: UserUpdate,
    admin: Identity = Depends(require_admin),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    user = await service.update_user(admin, user_id, payload)
    return success(user.model_dump(mode="json"))


@users_router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: Identity = Depends(require_admin),
    service: UserService = Depends(get_service),
) -> Dict[str, Any]:
    await service.delete_user(admin, user_id)
    return success({"message": "User deleted successfully"})


# -- error handlers -------------------------------------------------------


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = DomainError("Invalid request", details=str(exc.errors()), code=ErrorCode.VALIDATION)
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.to_dict()})


# -- factory --------------------------------------------------------------


def create_app(settings: Settings, connection: Optional[Connection] = None) -> FastAPI:
    """Build the application.

    When ``connection`` is given it is used as-is and left open on shutdown;
    otherwise the lifespan opens one from ``settings`` and closes it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = connection is None
        conn = connection if connection is not None else await open_connection(settings.database)
        try:
            await prepare_schema(conn, settings)
            app.state.connection = conn
            app.state.service = UserService(new_user_repository(conn), TokenService(settings.jwt))
            logger.info("Account service ready (env=%s, driver=%s)", settings.env, conn.driver.value)
            yield
        finally:
            if owned:
                await conn.close()

    app = FastAPI(title="account-service", debug=settings.debug, lifespan=lifespan)
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    api = APIRouter(prefix=API_PREFIX)
    api.include_router(auth_router)
    api.include_router(users_router)
    app.include_router(api)

    @app.get("/health")
    async def health(request: Request) -> Dict[str, str]:
        """Report whether the database answers."""
        conn: Connection = request.app.state.connection
        await conn.health()
        return {"status": "ok", "database": conn.driver.value}

    return app
