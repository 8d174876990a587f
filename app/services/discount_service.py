"""Discount code resolution and redemption bookkeeping."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.discount import (
    DiscountCode,
    DiscountCodeUsage,
    DiscountType,
    TargetKind,
    calculate_discount_amount,
)
from app.models.organization import AlumniDiscountType, Organization
from core.logging import get_logger

logger = get_logger(__name__)

# Reserved code resolved from organization settings instead of the codes table
ALUMNI_CODE = "ALUMNI"


@dataclass
class AlumniDiscountSettings:
    """Organization-wide alumni pricing."""

    enabled: bool = False
    discount_type: Optional[DiscountType] = None
    value: Optional[Decimal] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.discount_type and self.value)

    @classmethod
    def from_organization(cls, organization: Optional[Organization]) -> "AlumniDiscountSettings":
        if organization is None:
            return cls()
        discount_type = None
        if organization.alumni_discount_type is not None:
            discount_type = (
                DiscountType.PERCENTAGE
                if organization.alumni_discount_type == AlumniDiscountType.PERCENTAGE
                else DiscountType.FIXED
            )
        return cls(
            enabled=organization.alumni_discount_enabled,
            discount_type=discount_type,
            value=organization.alumni_discount_value,
        )


@dataclass
class DiscountOutcome:
    """Result of resolving a discount code against a price."""

    is_valid: bool
    code: str
    original_amount: int
    discount_amount: int = 0
    final_amount: int = 0
    error_message: Optional[str] = None
    discount_code_id: Optional[str] = None  # None for the reserved alumni code
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None

    @property
    def is_alumni(self) -> bool:
        return self.code == ALUMNI_CODE

    @classmethod
    def rejected(cls, code: str, original_amount: int, error_message: str) -> "DiscountOutcome":
        return cls(
            is_valid=False,
            code=code,
            original_amount=original_amount,
            final_amount=original_amount,
            error_message=error_message,
        )

    @classmethod
    def applied(
        cls,
        code: str,
        original_amount: int,
        discount_type: DiscountType,
        discount_value: Decimal,
        discount_code_id: Optional[str] = None,
    ) -> "DiscountOutcome":
        discount_amount = calculate_discount_amount(discount_type, discount_value, original_amount)
        return cls(
            is_valid=True,
            code=code,
            original_amount=original_amount,
            discount_amount=discount_amount,
            final_amount=max(0, original_amount - discount_amount),
            discount_code_id=discount_code_id,
            discount_type=discount_type,
            discount_value=discount_value,
        )


class DiscountService:
    """Validates discount codes and records their redemption."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def resolve(
        self,
        code: str,
        actor_id: str,
        organization_id: str,
        target_id: str,
        target_kind: TargetKind,
        original_amount: int,
        alumni_settings: Optional[AlumniDiscountSettings] = None,
        actor_is_alumni: bool = False,
        now: Optional[datetime] = None,
    ) -> DiscountOutcome:
        """
        Resolve a code to a discounted price. Never writes.

        Args:
            code: Code as typed by the buyer (trimmed and upper-cased here)
            actor_id: Buyer's user id, for per-person caps
            organization_id: Organization the code must belong to
            target_id: Program or squad id being bought
            target_kind: Kind of target_id
            original_amount: List price in minor units
            alumni_settings: Organization alumni pricing for the reserved code
            actor_is_alumni: Whether the buyer is an alumnus
            now: Evaluation time, for the validity window

        Returns:
            DiscountOutcome; rejected outcomes carry the reason and leave the
            price untouched.
        """
        normalized = DiscountCode.normalize(code)

        if normalized == ALUMNI_CODE:
            return self._resolve_alumni(
                original_amount, alumni_settings or AlumniDiscountSettings(), actor_is_alumni
            )

        discount = await DiscountCode.get_by_code(self.db_session, organization_id, normalized)
        if not discount:
            return DiscountOutcome.rejected(normalized, original_amount, "Invalid discount code")

        usage_count = 0
        if discount.max_uses_per_user:
            usage_count = await DiscountCodeUsage.count_for_user(
                self.db_session, discount.id, actor_id
            )

        is_valid, error_message = discount.is_valid(
            target_id=target_id,
            target_kind=target_kind,
            user_usage_count=usage_count,
            now=now,
        )
        if not is_valid:
            logger.info(f"Discount code {normalized} rejected for user {actor_id}: {error_message}")
            return DiscountOutcome.rejected(normalized, original_amount, error_message)

        return DiscountOutcome.applied(
            code=normalized,
            original_amount=original_amount,
            discount_type=discount.discount_type,
            discount_value=discount.discount_value,
            discount_code_id=discount.id,
        )

    @staticmethod
    def _resolve_alumni(
        original_amount: int,
        alumni_settings: AlumniDiscountSettings,
        actor_is_alumni: bool,
    ) -> DiscountOutcome:
        if not alumni_settings.is_configured:
            return DiscountOutcome.rejected(
                ALUMNI_CODE, original_amount, "Alumni discount is not available"
            )
        if not actor_is_alumni:
            return DiscountOutcome.rejected(
                ALUMNI_CODE, original_amount, "Alumni discount is only available to alumni"
            )
        return DiscountOutcome.applied(
            code=ALUMNI_CODE,
            original_amount=original_amount,
            discount_type=alumni_settings.discount_type,
            discount_value=alumni_settings.value,
        )

    async def record_usage(
        self,
        outcome: DiscountOutcome,
        user_id: str,
        organization_id: str,
        program_id: Optional[str] = None,
        squad_id: Optional[str] = None,
        enrollment_id: Optional[str] = None,
    ) -> Optional[DiscountCodeUsage]:
        """
        Write the usage audit row and bump the code's counter.

        Only called once the enrollment is committed. The reserved alumni code
        has no row to count against, so nothing is recorded for it.
        """
        if not outcome.is_valid or not outcome.discount_code_id:
            return None

        usage = DiscountCodeUsage(
            discount_code_id=outcome.discount_code_id,
            user_id=user_id,
            organization_id=organization_id,
            program_id=program_id,
            squad_id=squad_id,
            enrollment_id=enrollment_id,
            original_amount=outcome.original_amount,
            discount_amount=outcome.discount_amount,
            final_amount=outcome.final_amount,
        )
        self.db_session.add(usage)
        await DiscountCode.increment_usage(self.db_session, outcome.discount_code_id)
        await self.db_session.commit()

        logger.info(
            f"Recorded discount {outcome.code} for user {user_id}: "
            f"-{outcome.discount_amount} on {outcome.original_amount}"
        )
        return usage
