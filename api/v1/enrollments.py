"""Enrollment API endpoints for enrolling members into programs."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_enrollment_service
from app.models.enrollment import Enrollment
from app.models.user import User
from app.schemas.enrollment import (
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollRequest,
    EnrollResponse,
    VerifyPaymentRequest,
)
from app.services.enrollment_service import EnrollmentOutcome, EnrollmentService
from core.db import get_db
from core.exceptions.base import ForbiddenException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])


def outcome_to_response(outcome: EnrollmentOutcome) -> EnrollResponse:
    """Convert an enrollment outcome to the API response."""
    discount = outcome.discount
    return EnrollResponse(
        message=outcome.message,
        requires_payment=outcome.requires_payment,
        checkout_url=outcome.checkout_url,
        session_id=outcome.session_id,
        enrollment=(
            EnrollmentResponse.model_validate(outcome.enrollment)
            if outcome.enrollment
            else None
        ),
        original_amount=discount.original_amount if discount else None,
        discount_amount=discount.discount_amount if discount else 0,
        final_amount=discount.final_amount if discount else None,
        already_processed=outcome.already_processed,
        warnings=outcome.warnings,
    )


@router.post("", response_model=EnrollResponse)
async def enroll(
    data: EnrollRequest,
    current_user: User = Depends(get_current_user),
    db_session: AsyncSession = Depends(get_db),
    enrollment_service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollResponse:
    """
    Enroll in a program.

    Free (or fully discounted) programs are enrolled immediately. Paid programs
    return a Stripe checkout URL; the enrollment is created once payment is
    confirmed by webhook or verify-payment. Staff may enroll another member of
    their organization for free by passing target_user_id.
    """
    member = current_user
    complimentary = False

    if data.target_user_id and data.target_user_id != current_user.id:
        if not current_user.is_staff:
            raise ForbiddenException(message="Only staff can enroll other members")
        member = await User.get_by_id(db_session, data.target_user_id)
        if not member or member.organization_id != current_user.organization_id:
            raise NotFoundException(message="User not found")
        complimentary = True
        logger.info(
            f"Staff {current_user.id} granting complimentary enrollment "
            f"in program {data.program_id} to user {member.id}"
        )

    outcome = await enrollment_service.enroll(
        member,
        program_id=data.program_id,
        cohort_id=data.cohort_id,
        discount_code=data.discount_code,
        opted_into_community=data.join_community,
        complimentary=complimentary,
    )
    return outcome_to_response(outcome)


@router.post("/verify-payment", response_model=EnrollResponse)
async def verify_payment(
    data: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    enrollment_service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollResponse:
    """
    Confirm a paid checkout session and complete the enrollment.

    Fallback for when the Stripe webhook has not arrived yet; safe to call
    repeatedly for the same session.
    """
    logger.info(f"Verify payment for session {data.session_id} by user: {current_user.id}")
    outcome = await enrollment_service.verify_payment(current_user, data.session_id)
    return outcome_to_response(outcome)


@router.get("/my", response_model=EnrollmentListResponse)
async def get_my_enrollments(
    current_user: User = Depends(get_current_user),
    db_session: AsyncSession = Depends(get_db),
) -> EnrollmentListResponse:
    """Get all enrollments of the current user."""
    enrollments = await Enrollment.get_by_user_id(db_session, current_user.id)
    items = [EnrollmentResponse.model_validate(e) for e in enrollments]
    return EnrollmentListResponse(items=items, total=len(items))


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: str,
    current_user: User = Depends(get_current_user),
    db_session: AsyncSession = Depends(get_db),
) -> EnrollmentResponse:
    """Get enrollment by ID."""
    enrollment = await Enrollment.get_by_id(db_session, enrollment_id)

    if not enrollment:
        raise NotFoundException(message="Enrollment not found")

    if enrollment.user_id != current_user.id and not (
        current_user.is_staff and enrollment.organization_id == current_user.organization_id
    ):
        raise ForbiddenException(message="You don't have access to this enrollment")

    return EnrollmentResponse.model_validate(enrollment)
