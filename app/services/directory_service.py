"""Lookups of organization staff."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import Role, User
from core.logging import get_logger

logger = get_logger(__name__)


class OrganizationDirectory:
    """Resolves people holding organization-level roles."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def get_organization_administrator(self, organization_id: str) -> Optional[User]:
        """
        First administrator of the organization, falling back to the owner.

        Several admins are resolved deterministically by creation time.
        """
        for role in (Role.ADMIN, Role.OWNER):
            users = await User.get_by_role(self.db_session, organization_id, role)
            if users:
                return users[0]

        logger.warning(f"No administrator found for organization {organization_id}")
        return None
