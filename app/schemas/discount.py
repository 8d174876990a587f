"""Discount code schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from app.models.discount import DiscountScope, DiscountType
from app.schemas.base import BaseSchema


# ============== Discount Code Validation ==============


class DiscountCodeValidate(BaseSchema):
    """Preview a discount code against a program."""

    code: str = Field(..., min_length=1, max_length=50)
    program_id: str


class DiscountValidationResponse(BaseSchema):
    """Discount validation result (amounts in minor units)."""

    is_valid: bool
    code: str
    error_message: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    original_amount: int
    discount_amount: int = 0
    final_amount: int


# ============== Discount Code Admin CRUD ==============


class DiscountCodeCreate(BaseSchema):
    """Create a new discount code (admin only)."""

    code: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, gt=0)
    max_uses_per_user: Optional[int] = Field(None, gt=0)
    applicable_to: DiscountScope = DiscountScope.ALL
    program_ids: Optional[list[str]] = None
    squad_ids: Optional[list[str]] = None


class DiscountCodeUpdate(BaseSchema):
    """Update discount code."""

    description: Optional[str] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, gt=0)
    max_uses_per_user: Optional[int] = Field(None, gt=0)
    applicable_to: Optional[DiscountScope] = None
    program_ids: Optional[list[str]] = None
    squad_ids: Optional[list[str]] = None
    is_active: Optional[bool] = None


class DiscountCodeResponse(BaseSchema):
    """Discount code response."""

    id: str
    organization_id: str
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int
    max_uses_per_user: Optional[int] = None
    applicable_to: DiscountScope
    program_ids: Optional[list[str]] = None
    squad_ids: Optional[list[str]] = None
    is_active: bool
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DiscountCodeListResponse(BaseSchema):
    """List of discount codes."""

    items: list[DiscountCodeResponse]
    total: int


class DiscountUsageResponse(BaseSchema):
    """A single redemption of a discount code."""

    id: str
    discount_code_id: str
    user_id: str
    program_id: Optional[str] = None
    squad_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    original_amount: int
    discount_amount: int
    final_amount: int
    used_at: datetime


class DiscountUsageListResponse(BaseSchema):
    """Redemptions of a discount code."""

    items: list[DiscountUsageResponse]
    total: int
