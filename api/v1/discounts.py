"""Discount code API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_current_user
from app.models.discount import DiscountCode, DiscountCodeUsage, TargetKind
from app.models.organization import Organization
from app.models.program import Program
from app.models.user import User
from app.schemas.discount import (
    DiscountCodeCreate,
    DiscountCodeListResponse,
    DiscountCodeResponse,
    DiscountCodeUpdate,
    DiscountCodeValidate,
    DiscountUsageListResponse,
    DiscountUsageResponse,
    DiscountValidationResponse,
)
from app.services.discount_service import AlumniDiscountSettings, DiscountService
from core.db import get_db
from core.exceptions.base import BadRequestException, NotFoundException
from core.exceptions.enrollment import ProgramNotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/discounts", tags=["Discounts"])


async def get_org_discount_code(
    db_session: AsyncSession, code_id: str, organization_id: str
) -> DiscountCode:
    discount = await DiscountCode.get_by_id(db_session, code_id)
    if not discount or discount.organization_id != organization_id:
        raise NotFoundException(message="Discount code not found")
    return discount


# ============== Discount Code Validation ==============


@router.post("/validate", response_model=DiscountValidationResponse)
async def validate_discount_code(
    data: DiscountCodeValidate,
    current_user: User = Depends(get_current_user),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountValidationResponse:
    """
    Validate a discount code against a program and calculate its value.

    Nothing is redeemed; the code is only counted once an enrollment uses it.
    """
    logger.info(f"Validate discount code {data.code} for user: {current_user.id}")

    program = await Program.get_by_id(db_session, data.program_id)
    if not program or program.organization_id != current_user.organization_id:
        raise ProgramNotFoundException()

    organization = await Organization.get_by_id(db_session, program.organization_id)
    outcome = await DiscountService(db_session).resolve(
        code=data.code,
        actor_id=current_user.id,
        organization_id=program.organization_id,
        target_id=program.id,
        target_kind=TargetKind.PROGRAM,
        original_amount=program.price_cents,
        alumni_settings=AlumniDiscountSettings.from_organization(organization),
        actor_is_alumni=current_user.is_alumni,
    )

    return DiscountValidationResponse(
        is_valid=outcome.is_valid,
        code=outcome.code,
        error_message=outcome.error_message,
        discount_type=outcome.discount_type,
        discount_value=outcome.discount_value,
        original_amount=outcome.original_amount,
        discount_amount=outcome.discount_amount,
        final_amount=outcome.final_amount,
    )


# ============== Discount Code Admin CRUD ==============


@router.post("/codes", response_model=DiscountCodeResponse)
async def create_discount_code(
    data: DiscountCodeCreate,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    """
    Create a new discount code (admin only).
    """
    logger.info(f"Create discount code {data.code} by admin: {current_user.id}")

    existing = await DiscountCode.get_by_code(
        db_session, current_user.organization_id, data.code
    )
    if existing:
        raise BadRequestException(message="Discount code already exists")

    discount = DiscountCode(
        code=DiscountCode.normalize(data.code),
        description=data.description,
        discount_type=data.discount_type,
        discount_value=data.discount_value,
        starts_at=data.starts_at,
        expires_at=data.expires_at,
        max_uses=data.max_uses,
        use_count=0,
        max_uses_per_user=data.max_uses_per_user,
        applicable_to=data.applicable_to,
        program_ids=data.program_ids,
        squad_ids=data.squad_ids,
        is_active=True,
        created_by_id=current_user.id,
        organization_id=current_user.organization_id,
    )
    db_session.add(discount)
    await db_session.commit()
    await db_session.refresh(discount)

    logger.info(f"Discount code created: {discount.id}")
    return DiscountCodeResponse.model_validate(discount)


@router.get("/codes", response_model=DiscountCodeListResponse)
async def list_discount_codes(
    is_active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountCodeListResponse:
    """
    List the organization's discount codes (admin only).
    """
    conditions = [DiscountCode.organization_id == current_user.organization_id]
    if is_active is not None:
        conditions.append(DiscountCode.is_active == is_active)

    total = (
        await db_session.execute(select(func.count(DiscountCode.id)).where(*conditions))
    ).scalar() or 0
    result = await db_session.execute(
        select(DiscountCode)
        .where(*conditions)
        .order_by(DiscountCode.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    items = [DiscountCodeResponse.model_validate(d) for d in result.scalars().all()]
    return DiscountCodeListResponse(items=items, total=total)


@router.get("/codes/{code_id}", response_model=DiscountCodeResponse)
async def get_discount_code(
    code_id: str,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    """Get discount code by ID (admin only)."""
    discount = await get_org_discount_code(db_session, code_id, current_user.organization_id)
    return DiscountCodeResponse.model_validate(discount)


@router.put("/codes/{code_id}", response_model=DiscountCodeResponse)
async def update_discount_code(
    code_id: str,
    data: DiscountCodeUpdate,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    """
    Update discount code (admin only).
    """
    logger.info(f"Update discount code {code_id} by admin: {current_user.id}")

    discount = await get_org_discount_code(db_session, code_id, current_user.organization_id)

    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(discount, field, value)

    await db_session.commit()
    await db_session.refresh(discount)

    return DiscountCodeResponse.model_validate(discount)


@router.delete("/codes/{code_id}")
async def deactivate_discount_code(
    code_id: str,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> dict:
    """
    Deactivate discount code (admin only). Redemption history is kept.
    """
    logger.info(f"Deactivate discount code {code_id} by admin: {current_user.id}")

    discount = await get_org_discount_code(db_session, code_id, current_user.organization_id)
    discount.is_active = False
    await db_session.commit()

    return {"message": "Discount code deactivated successfully"}


@router.get("/codes/{code_id}/usage", response_model=DiscountUsageListResponse)
async def list_discount_code_usage(
    code_id: str,
    current_user: User = Depends(get_current_admin),
    db_session: AsyncSession = Depends(get_db),
) -> DiscountUsageListResponse:
    """List redemptions of a discount code (admin only)."""
    discount = await get_org_discount_code(db_session, code_id, current_user.organization_id)
    usages = await DiscountCodeUsage.get_for_code(db_session, discount.id)
    items = [DiscountUsageResponse.model_validate(u) for u in usages]
    return DiscountUsageListResponse(items=items, total=len(items))
