"""Identity business logic layer."""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID, uuid4

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import get_settings
from tutormarket.core.database import get_db_session
from tutormarket.core.enums import RoleEnum
from tutormarket.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    oauth2_scheme,
    verify_password,
)
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.models import User
from tutormarket.modules.identity.repository import IdentityRepository
from tutormarket.modules.identity.schemas import LoginRequest, TokenPair, UserCreate
from tutormarket.shared.exceptions import ConflictException, ForbiddenException, UnauthorizedException
from tutormarket.shared.utils import utc_now

settings = get_settings()

SELF_REGISTRATION_ROLES = (RoleEnum.STUDENT, RoleEnum.TUTOR)


class IdentityService:
    """Identity domain service."""

    def __init__(self, repository: IdentityRepository) -> None:
        self.repository = repository

    async def register(self, payload: UserCreate) -> User:
        """Register new student or tutor account."""
        if payload.role not in SELF_REGISTRATION_ROLES:
            raise ForbiddenException("Staff accounts cannot be self-registered")

        existing_user = await self.repository.get_user_by_email(payload.email)
        if existing_user is not None:
            raise ConflictException("User with this email already exists")

        return await self.repository.create_user(
            email=payload.email,
            name=payload.name,
            password_hash=hash_password(payload.password),
            role=payload.role,
        )

    async def login(self, payload: LoginRequest) -> TokenPair:
        """Authenticate user and issue JWT tokens."""
        user = await self.repository.get_user_by_email(payload.email)
        if user is None or not verify_password(payload.password, user.password_hash):
            raise UnauthorizedException("Invalid credentials")

        if not user.is_active:
            raise UnauthorizedException("User is inactive")

        return await self._issue_tokens(user)

    async def refresh_tokens(self, refresh_token_value: str) -> TokenPair:
        """Rotate refresh token and issue new token pair."""
        payload = decode_token(refresh_token_value)
        if payload.get("type") != "refresh":
            raise UnauthorizedException("Invalid token type")

        token_id = payload.get("jti")
        subject = payload.get("sub")
        if not token_id or not subject:
            raise UnauthorizedException("Invalid refresh token")

        db_token = await self.repository.get_refresh_token_by_id(token_id)
        if db_token is None or db_token.revoked_at is not None or db_token.expires_at <= utc_now():
            raise UnauthorizedException("Refresh token is not valid")

        await self.repository.revoke_refresh_token(token_id, utc_now())

        user = await self.repository.get_user_by_id(UUID(subject))
        if user is None or not user.is_active:
            raise UnauthorizedException("User is not valid")

        return await self._issue_tokens(user)

    async def _issue_tokens(self, user: User) -> TokenPair:
        token_id = str(uuid4())
        role = str(user.role)
        access_token = create_access_token(subject=str(user.id), role=role)
        refresh_token = create_refresh_token(subject=str(user.id), token_id=token_id, role=role)

        expires_at = utc_now() + timedelta(days=settings.refresh_token_expire_days)
        await self.repository.create_refresh_token(user.id, token_id, expires_at)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def get_context_from_access_token(self, token: str) -> AuthContext:
        """Resolve authenticated caller from access token."""
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise UnauthorizedException("Invalid access token")

        subject = payload.get("sub")
        if not subject:
            raise UnauthorizedException("Token subject is missing")

        try:
            user_id = UUID(subject)
        except ValueError as exc:
            raise UnauthorizedException("Token subject is malformed") from exc

        user = await self.repository.get_user_by_id(user_id)
        if user is None:
            raise UnauthorizedException("User not found")
        if not user.is_active:
            raise UnauthorizedException("User is inactive")

        return AuthContext.from_user(user)


async def get_identity_service(session: AsyncSession = Depends(get_db_session)) -> IdentityService:
    """Dependency to provide identity service."""
    return IdentityService(IdentityRepository(session))


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service),
) -> AuthContext:
    """Resolve currently authenticated user from bearer token."""
    if not token:
        raise UnauthorizedException("Not authenticated")
    return await service.get_context_from_access_token(token)


def require_admin(current_user: AuthContext = Depends(get_current_user)) -> AuthContext:
    """Dependency that admits admins and super admins only."""
    if not current_user.is_admin:
        raise ForbiddenException("Operation not permitted for your role")
    return current_user
