"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from unitpicker.domain.errors import (
    AllocationError,
    ConflictError,
    InventoryValidationError,
    NotFoundError,
    NotOwnerError,
    PermissionDeniedError,
    QuotaExceededError,
    RoomUnavailableError,
)
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.auth_service import AuthService, InvalidSessionError
from unitpicker.services.transfer_service import InventoryTransferService
from unitpicker.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)

_STATUS_BY_ERROR: tuple[tuple[type[AllocationError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (QuotaExceededError, status.HTTP_409_CONFLICT),
    (RoomUnavailableError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotOwnerError, status.HTTP_403_FORBIDDEN),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InventoryValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def to_http_exception(exc: AllocationError) -> HTTPException:
    """Map an engine rejection to a response that keeps its ``kind``."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())


def get_engine(connection: HTTPConnection) -> AllocationEngine:
    engine = getattr(connection.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Allocation engine is not initialized",
        )
    return engine


def get_auth_service(connection: HTTPConnection) -> AuthService:
    service = getattr(connection.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        connection.app.state.auth_service = service
    return service


def get_transfer_service(connection: HTTPConnection) -> InventoryTransferService:
    service = getattr(connection.app.state, "transfer_service", None)
    if service is None:
        service = InventoryTransferService(get_engine(connection))
        connection.app.state.transfer_service = service
    return service


async def require_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    """Resolve the bearer token to the acting user id."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve(credentials.credentials)
    except InvalidSessionError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(
    user_id: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> str:
    """Gate admin routes; the engine re-checks the admin flag on every call."""
    try:
        engine.ensure_admin(user_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return user_id
