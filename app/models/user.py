import enum
from typing import Dict, Optional, Sequence
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Enum, Index, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin, OrganizationMixin


class Role(str, enum.Enum):
    """User roles within an organization."""
    OWNER = "owner"
    ADMIN = "admin"
    COACH = "coach"
    CLIENT = "client"


STAFF_ROLES = (Role.OWNER, Role.ADMIN, Role.COACH)


class User(Base, TimestampMixin, OrganizationMixin):
    """Person profile: members, coaches and organization staff."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        default=Role.CLIENT,
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_alumni: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # 1:1 coaching assignment, written by the coaching provisioner
    coach_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_coaching_client: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    coaching_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Stripe customers live on each organization's connected account
    stripe_connected_customer_ids: Mapped[Optional[Dict[str, str]]] = mapped_column(
        JSON, nullable=True
    )

    __table_args__ = (
        Index(
            "ix_users_organization_email",
            "organization_id",
            "email",
            unique=True,
        ),
    )

    @property
    def full_name(self) -> str:
        """Get user's full name."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def get_connected_customer_id(self, account_id: str) -> Optional[str]:
        """Stripe customer id on the given connected account, if one was created."""
        return (self.stripe_connected_customer_ids or {}).get(account_id)

    def set_connected_customer_id(self, account_id: str, customer_id: str) -> None:
        # Reassign so the JSON column is flagged dirty
        customer_ids = dict(self.stripe_connected_customer_ids or {})
        customer_ids[account_id] = customer_id
        self.stripe_connected_customer_ids = customer_ids

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["User"]:
        """Get user by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_role(
        cls, db_session: AsyncSession, organization_id: str, role: Role
    ) -> Sequence["User"]:
        """Active users of an organization holding a role, oldest first."""
        result = await db_session.execute(
            select(cls)
            .where(
                cls.organization_id == organization_id,
                cls.role == role,
                cls.is_active == True,
            )
            .order_by(cls.created_at, cls.id)
        )
        return result.scalars().all()
