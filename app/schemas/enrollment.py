"""Enrollment-related schemas."""

from datetime import date, datetime
from typing import Optional

from pydantic import Field

from app.models.enrollment import EnrollmentStatus
from app.schemas.base import BaseSchema


class EnrollRequest(BaseSchema):
    """Enroll in a program."""

    program_id: str
    cohort_id: Optional[str] = None
    discount_code: Optional[str] = Field(None, max_length=50)
    join_community: bool = True
    # Staff only: grant a complimentary enrollment to another member
    target_user_id: Optional[str] = None


class EnrollmentResponse(BaseSchema):
    """Enrollment response."""

    id: str
    user_id: str
    program_id: str
    cohort_id: Optional[str] = None
    squad_id: Optional[str] = None
    status: EnrollmentStatus
    started_at: date
    last_assigned_day_index: int
    joined_community: bool
    amount_paid: int
    paid_at: Optional[datetime] = None
    discount_code_id: Optional[str] = None
    discount_amount: int
    created_at: datetime
    updated_at: datetime


class EnrollmentListResponse(BaseSchema):
    """List of enrollments."""

    items: list[EnrollmentResponse]
    total: int


class EnrollResponse(BaseSchema):
    """Either a completed enrollment or a checkout to complete."""

    success: bool = True
    message: str
    requires_payment: bool = False
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None
    enrollment: Optional[EnrollmentResponse] = None
    original_amount: Optional[int] = None
    discount_amount: int = 0
    final_amount: Optional[int] = None
    already_processed: bool = False
    warnings: list[str] = []


class VerifyPaymentRequest(BaseSchema):
    """Confirm a completed checkout session."""

    session_id: str = Field(..., min_length=1)
