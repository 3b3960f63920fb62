"""Typed authentication context passed to every service call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import assert_never
from uuid import UUID

from tutormarket.core.enums import RoleEnum


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Authenticated caller resolved from a bearer token."""

    user_id: UUID
    role: RoleEnum
    name: str
    email: str

    @property
    def is_admin(self) -> bool:
        match self.role:
            case RoleEnum.ADMIN | RoleEnum.SUPER_ADMIN:
                return True
            case RoleEnum.STUDENT | RoleEnum.TUTOR:
                return False
            case _:
                assert_never(self.role)

    @property
    def is_tutor(self) -> bool:
        return self.role == RoleEnum.TUTOR

    @property
    def is_student(self) -> bool:
        return self.role == RoleEnum.STUDENT

    @classmethod
    def from_user(cls, user) -> "AuthContext":
        return cls(user_id=user.id, role=RoleEnum(user.role), name=user.name, email=user.email)
