"""Discount code and usage audit models."""

import enum
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin, OrganizationMixin


class DiscountType(str, enum.Enum):
    """Type of discount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"  # Amount in minor units


class DiscountScope(str, enum.Enum):
    """Which kind of purchase a code may be redeemed against."""

    PROGRAMS = "programs"
    SQUADS = "squads"
    ALL = "all"


class TargetKind(str, enum.Enum):
    """Kind of thing being purchased."""

    PROGRAM = "program"
    SQUAD = "squad"


def calculate_discount_amount(
    discount_type: DiscountType, value: Decimal, original_amount: int
) -> int:
    """
    Discount in minor units for a given list price.

    Percentages round half up to the nearest minor unit; fixed amounts never
    exceed the original amount.
    """
    if original_amount <= 0:
        return 0
    if discount_type == DiscountType.PERCENTAGE:
        amount = (Decimal(original_amount) * Decimal(value) / Decimal("100")).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return min(int(amount), original_amount)
    return min(int(Decimal(value)), original_amount)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DiscountCode(Base, TimestampMixin, OrganizationMixin):
    """Discount/promo code model."""

    __tablename__ = "discount_codes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    # Code details
    code: Mapped[str] = mapped_column(String(50), nullable=False)  # Stored upper-case
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False
    )  # Percentage (0-100) or fixed minor units

    # Validity window
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Usage limits
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # null = unlimited
    use_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_uses_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Restrictions
    applicable_to: Mapped[DiscountScope] = mapped_column(
        Enum(DiscountScope, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        default=DiscountScope.ALL,
        nullable=False,
    )
    program_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    squad_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "code", name="uq_discount_codes_organization_code"
        ),
    )

    @staticmethod
    def normalize(code: str) -> str:
        return code.strip().upper()

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["DiscountCode"]:
        """Get discount code by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_code(
        cls, db_session: AsyncSession, organization_id: str, code: str
    ) -> Optional["DiscountCode"]:
        """Get an organization's discount code, case-insensitively."""
        result = await db_session.execute(
            select(cls).where(
                cls.organization_id == organization_id,
                cls.code == cls.normalize(code),
            )
        )
        return result.scalars().first()

    def is_valid(
        self,
        target_id: str,
        target_kind: TargetKind,
        user_usage_count: int = 0,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str]:
        """
        Check the code against its own rules, in order.

        Args:
            target_id: Program or squad being purchased
            target_kind: Whether target_id is a program or a squad
            user_usage_count: How many times the buyer already redeemed this code
            now: Evaluation time (defaults to current UTC time)

        Returns (is_valid, error_message)
        """
        now = now or datetime.now(timezone.utc)

        if not self.is_active:
            return False, "This discount code is no longer active"

        if self.starts_at and _as_aware(self.starts_at) > now:
            return False, "This discount code is not yet valid"

        if self.expires_at and _as_aware(self.expires_at) < now:
            return False, "This discount code has expired"

        if self.max_uses and self.use_count >= self.max_uses:
            return False, "This discount code has reached its usage limit"

        if self.max_uses_per_user and user_usage_count >= self.max_uses_per_user:
            return False, "You have already used this discount code"

        if self.applicable_to == DiscountScope.PROGRAMS and target_kind != TargetKind.PROGRAM:
            return False, "This discount code is only valid for programs"

        if self.applicable_to == DiscountScope.SQUADS and target_kind != TargetKind.SQUAD:
            return False, "This discount code is only valid for squads"

        allowed_ids = self.program_ids if target_kind == TargetKind.PROGRAM else self.squad_ids
        if allowed_ids and target_id not in allowed_ids:
            return False, f"This discount code is not valid for this {target_kind.value}"

        return True, ""

    @classmethod
    async def increment_usage(cls, db_session: AsyncSession, id: str) -> None:
        """Increment the global usage counter in a single statement."""
        await db_session.execute(
            update(cls)
            .where(cls.id == id)
            .values(use_count=cls.use_count + 1)
            .execution_options(synchronize_session=False)
        )


class DiscountCodeUsage(Base, TimestampMixin):
    """Audit record of a redeemed discount code."""

    __tablename__ = "discount_code_usage"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    discount_code_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discount_codes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    program_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    squad_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    enrollment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    final_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    @classmethod
    async def count_for_user(
        cls, db_session: AsyncSession, discount_code_id: str, user_id: str
    ) -> int:
        """How many times a user has redeemed a code."""
        result = await db_session.execute(
            select(func.count(cls.id)).where(
                cls.discount_code_id == discount_code_id,
                cls.user_id == user_id,
            )
        )
        return result.scalar() or 0

    @classmethod
    async def get_for_enrollment(
        cls, db_session: AsyncSession, enrollment_id: str
    ) -> Optional["DiscountCodeUsage"]:
        result = await db_session.execute(
            select(cls).where(cls.enrollment_id == enrollment_id)
        )
        return result.scalars().first()

    @classmethod
    async def get_for_code(
        cls, db_session: AsyncSession, discount_code_id: str
    ) -> Sequence["DiscountCodeUsage"]:
        result = await db_session.execute(
            select(cls)
            .where(cls.discount_code_id == discount_code_id)
            .order_by(cls.used_at.desc())
        )
        return result.scalars().all()
