"""Organization model for multi-tenant scoping."""

import enum
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, Enum, Numeric, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin


class AlumniDiscountType(str, enum.Enum):
    """How the organization-wide alumni discount is applied."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Organization(Base, TimestampMixin):
    """Tenant organization running coaching programs."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    # Alumni pricing
    alumni_discount_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    alumni_discount_type: Mapped[Optional[AlumniDiscountType]] = mapped_column(
        Enum(
            AlumniDiscountType,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    alumni_discount_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )  # Percent (0-100) or minor units, depending on type

    # Payments (Stripe Connect)
    stripe_connect_account_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    platform_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Organization"]:
        """Get organization by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    def __repr__(self) -> str:
        return f"Organization(id={self.id}, name={self.name})"
