from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import STAFF_ROLES, Role, User
from app.services.chat_service import ChatService
from app.services.enrollment_service import EnrollmentService
from app.utils.security import decode_access_token
from core.db import get_db
from core.exceptions.base import ForbiddenException, UnauthorizedException

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db_session: AsyncSession = Depends(get_db),
) -> User:
    """Get the current authenticated user from JWT token."""
    if credentials is None:
        raise UnauthorizedException(message="Not authenticated")

    claims = decode_access_token(credentials.credentials)
    user = await User.get_by_id(db_session, claims["sub"])

    if not user:
        raise UnauthorizedException(message="User not found")

    # A token minted for one organization never authenticates in another
    if claims.get("org") != user.organization_id:
        raise UnauthorizedException(message="Token organization mismatch")

    if not user.is_active:
        raise UnauthorizedException(message="User is inactive")

    return user


async def get_current_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """Get the current user if they have admin or owner role."""
    if current_user.role not in [Role.ADMIN, Role.OWNER]:
        raise ForbiddenException(message="Admin access required")
    return current_user


async def get_current_staff(
    current_user: User = Depends(get_current_user),
) -> User:
    """Get the current user if they have coach, admin, or owner role."""
    if current_user.role not in STAFF_ROLES:
        raise ForbiddenException(message="Coach/staff access required")
    return current_user


def get_chat_service() -> ChatService:
    """Chat backend client; disabled when no service URL is configured."""
    return ChatService()


async def get_enrollment_service(
    db_session: AsyncSession = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> EnrollmentService:
    return EnrollmentService(db_session, chat_service=chat_service)
