"""
ThesisMaster Backend - Caller Identity
=======================================

What:  FastAPI dependencies that resolve who is calling.
How:   An upstream auth gateway authenticates the user and forwards
       X-User-Id (UUID) and X-User-Role (student | writer | admin). This
       service trusts those headers and never issues sessions itself.
Who:   Every /api route.

    Missing or malformed X-User-Id   → AuthenticationError (401)
    Unknown X-User-Role              → AuthenticationError (401)
    Non-writer on a writer route     → PermissionDeniedError (403)
    Non-admin on an admin route      → PermissionDeniedError (403)
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from thesismaster.domain.enums import UserRole
from thesismaster.exceptions import AuthenticationError, PermissionDeniedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentIdentity:
    user_id: uuid.UUID
    role: UserRole = UserRole.STUDENT

    @property
    def is_writer(self) -> bool:
        return self.role == UserRole.WRITER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_current_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentIdentity:
    """Builds the caller identity from the gateway headers."""
    if not x_user_id:
        raise AuthenticationError()
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        logger.info("Rejected malformed X-User-Id header")
        raise AuthenticationError("Invalid user identity")

    role = UserRole.STUDENT
    if x_user_role:
        try:
            role = UserRole(x_user_role.strip().lower())
        except ValueError:
            raise AuthenticationError(f"Unknown user role '{x_user_role}'")

    return CurrentIdentity(user_id=user_id, role=role)


async def require_writer(
    identity: CurrentIdentity = Depends(get_current_identity),
) -> CurrentIdentity:
    if not identity.is_writer:
        raise PermissionDeniedError(
            "Writer access required", required_role=UserRole.WRITER.value
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_identity),
) -> CurrentIdentity:
    if not identity.is_admin:
        logger.warning("Admin route refused for %s (%s)", identity.user_id, identity.role.value)
        raise PermissionDeniedError("Admin access required", required_role=UserRole.ADMIN.value)
    return identity
