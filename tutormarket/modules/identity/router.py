"""Identity API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.schemas import LoginRequest, RefreshRequest, TokenPair, UserCreate, UserRead
from tutormarket.modules.identity.service import IdentityService, get_current_user, get_identity_service
from tutormarket.shared.exceptions import NotFoundException

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post("/auth/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(
    payload: UserCreate,
    service: IdentityService = Depends(get_identity_service),
) -> UserRead:
    """Register a new student or tutor account."""
    user = await service.register(payload)
    return UserRead.model_validate(user)


@router.post("/auth/login", response_model=TokenPair)
async def login(
    payload: LoginRequest,
    service: IdentityService = Depends(get_identity_service),
) -> TokenPair:
    """Sign in by email/password and return JWT token pair."""
    return await service.login(payload)


@router.post("/auth/refresh", response_model=TokenPair)
async def refresh_tokens(
    payload: RefreshRequest,
    service: IdentityService = Depends(get_identity_service),
) -> TokenPair:
    """Rotate refresh token and issue new token pair."""
    return await service.refresh_tokens(payload.refresh_token)


@router.get("/users/me", response_model=UserRead)
async def get_me(
    current_user: AuthContext = Depends(get_current_user),
    service: IdentityService = Depends(get_identity_service),
) -> UserRead:
    """Return profile of authenticated user."""
    user = await service.repository.get_user_by_id(current_user.user_id)
    if user is None:
        raise NotFoundException("User not found")
    return UserRead.model_validate(user)
