"""Controller layer for login sessions and the customer's own view."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from unitpicker.controllers.dependencies import (
    bearer_scheme,
    get_auth_service,
    get_engine,
    require_session,
    to_http_exception,
)
from unitpicker.controllers.schemas import RoomResponse, UserResponse
from unitpicker.domain.errors import AllocationError
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.auth_service import (
    AdminSecretNotConfiguredError,
    AuthService,
    InvalidAdminSecretError,
)
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["session"])


class LoginRequest(BaseModel):
    user_id: str = Field(min_length=1)
    admin_secret: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class LoginCandidate(BaseModel):
    id: str
    name: str
    phone: str
    is_admin: bool


class MeResponse(BaseModel):
    user: UserResponse
    owned_rooms: list[RoomResponse]
    remaining_selections: Optional[int] = Field(default=None, ge=0)


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/login/candidates", response_model=list[LoginCandidate])
async def login_candidates(
    query: str = Query(default="", max_length=64),
    engine: AllocationEngine = Depends(get_engine),
) -> list[LoginCandidate]:
    """Search customers by name or phone for the login picker."""
    return [
        LoginCandidate(id=user.id, name=user.name, phone=user.phone, is_admin=user.is_admin)
        for user in engine.search_users(query)
    ]


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    engine: AllocationEngine = Depends(get_engine),
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        user = engine.get_user(payload.user_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    try:
        token = auth_service.login(user, admin_secret=payload.admin_secret)
    except (AdminSecretNotConfiguredError, InvalidAdminSecretError) as exc:
        logger.warning("Rejected admin login for %s", user.id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    logger.info("User %s logged in", user.id)
    return LoginResponse(access_token=token, user=UserResponse.from_domain(user))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if credentials is not None:
        auth_service.logout(credentials.credentials)


@router.get("/me", response_model=MeResponse)
async def me(
    user_id: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> MeResponse:
    try:
        summary = engine.user_summary(user_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return MeResponse(
        user=UserResponse.from_domain(summary.user),
        owned_rooms=[RoomResponse.from_domain(room) for room in summary.owned_rooms],
        remaining_selections=summary.remaining,
    )
