"""Enrollment orchestration: validation, pricing, checkout and payment replay."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.discount import DiscountCodeUsage, TargetKind
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.organization import Organization
from app.models.program import Cohort, Program
from app.models.user import User
from app.services.chat_service import ChatService
from app.services.discount_service import (
    AlumniDiscountSettings,
    DiscountOutcome,
    DiscountService,
)
from app.services.lifecycle_service import EnrollmentLifecycle
from app.services.stripe_service import StripeService
from core.config import config as settings
from core.exceptions.base import BadRequestException, ForbiddenException
from core.exceptions.enrollment import (
    AllocationContentionException,
    AlreadyEnrolledException,
    CohortClosedException,
    CohortFullException,
    CohortNotFoundException,
    CohortRequiredException,
    InvalidDiscountException,
    PaymentNotCompletedException,
    PaymentProviderException,
    PaymentSetupMissingException,
    ProgramNotFoundException,
    ProgramUnavailableException,
)
from core.logging import get_logger

logger = get_logger(__name__)

# Checkout metadata marker for sessions created here
PROGRAM_ENROLLMENT_TYPE = "program_enrollment"


def calculate_platform_fee(amount_cents: int, fee_percent: Decimal) -> int:
    """Platform fee in minor units, rounded half up."""
    if amount_cents <= 0 or fee_percent <= 0:
        return 0
    fee = Decimal(amount_cents) * fee_percent / Decimal("100")
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_checkout_metadata(
    user_id: str,
    program: Program,
    cohort: Optional[Cohort],
    original_amount: int,
    discount: Optional[DiscountOutcome],
    opted_into_community: bool,
) -> Dict[str, str]:
    """Everything needed to replay the enrollment once payment succeeds (string values only)."""
    return {
        "type": PROGRAM_ENROLLMENT_TYPE,
        "user_id": user_id,
        "program_id": program.id,
        "cohort_id": cohort.id if cohort else "",
        "program_type": program.program_type.value,
        "organization_id": program.organization_id,
        "discount_code_id": (discount.discount_code_id or "") if discount else "",
        "discount_code": discount.code if discount else "",
        "original_amount_cents": str(original_amount),
        "discount_amount_cents": str(discount.discount_amount if discount else 0),
        "join_community": "true" if opted_into_community else "false",
    }


@dataclass
class EnrollmentOutcome:
    """Either a finished enrollment or a checkout the member has to complete."""

    requires_payment: bool = False
    enrollment: Optional[Enrollment] = None
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None
    discount: Optional[DiscountOutcome] = None
    warnings: List[str] = field(default_factory=list)
    already_processed: bool = False

    @property
    def message(self) -> str:
        if self.requires_payment:
            return "Complete payment to finish your enrollment"
        if self.already_processed:
            return "Enrollment already completed"
        if self.enrollment and self.enrollment.status == EnrollmentStatus.UPCOMING:
            return f"You're enrolled! The program starts on {self.enrollment.started_at.isoformat()}"
        return "Successfully enrolled in program"


class EnrollmentService:
    """Entry point for enrolling a member into a program."""

    def __init__(
        self,
        db_session: AsyncSession,
        chat_service: Optional[ChatService] = None,
        lifecycle: Optional[EnrollmentLifecycle] = None,
    ):
        self.db_session = db_session
        self.stripe_service = StripeService()
        self.discount_service = DiscountService(db_session)
        self.lifecycle = lifecycle or EnrollmentLifecycle(db_session, chat_service=chat_service)

    async def enroll(
        self,
        user: User,
        program_id: str,
        cohort_id: Optional[str] = None,
        discount_code: Optional[str] = None,
        opted_into_community: bool = True,
        complimentary: bool = False,
        now: Optional[datetime] = None,
    ) -> EnrollmentOutcome:
        """
        Enroll a member, or start checkout when there is something to pay.

        Args:
            user: Member being enrolled
            program_id: Program to enroll in
            cohort_id: Cohort, required for group programs
            discount_code: Optional code typed by the member
            opted_into_community: Join the program's community squad
            complimentary: Staff-granted access; skips payment and the
                published check
            now: Clock used for start date rules and discount windows

        Returns:
            EnrollmentOutcome with either the enrollment or checkout details.

        Raises:
            ProgramNotFoundException, ProgramUnavailableException,
            CohortRequiredException, CohortNotFoundException,
            CohortClosedException, CohortFullException,
            AlreadyEnrolledException, ConflictingActiveEnrollmentException,
            InvalidDiscountException, PaymentSetupMissingException,
            PaymentProviderException, AllocationContentionException
        """
        user_id = user.id
        logger.info(f"Enrollment requested: user {user_id}, program {program_id}, cohort {cohort_id}")

        program = await Program.get_by_id(self.db_session, program_id)
        if not program:
            raise ProgramNotFoundException()
        if not (program.is_available or (complimentary and program.is_active)):
            raise ProgramUnavailableException()

        existing = await Enrollment.get_open_for_program(self.db_session, user_id, program.id)
        if existing and self._needs_squad(existing, program):
            return await self._resume(existing, program)

        cohort = await self._validate_cohort(program, cohort_id)
        await self.lifecycle.check_conflicts(user_id, program)

        original_amount = program.price_cents
        final_amount = 0 if complimentary else original_amount
        discount: Optional[DiscountOutcome] = None

        if not complimentary and original_amount > 0 and discount_code and discount_code.strip():
            discount = await self._resolve_discount(user, program, discount_code, now)
            if discount is not None:
                final_amount = discount.final_amount

        if final_amount == 0:
            return await self._enroll_free(
                user_id, program, cohort, discount, opted_into_community, now
            )

        return await self._start_checkout(
            user, program, cohort, original_amount, final_amount, discount, opted_into_community
        )

    async def complete_paid_enrollment(
        self,
        session_id: str,
        metadata: Dict[str, str],
        amount_paid: int,
    ) -> EnrollmentOutcome:
        """
        Replay an enrollment after its checkout session was paid.

        Safe to call any number of times for the same session: the session id
        is stored on the enrollment and a second call returns the first result.
        """
        existing = await Enrollment.get_by_checkout_session(self.db_session, session_id)
        if existing:
            return await self._already_processed(existing)

        if metadata.get("type") != PROGRAM_ENROLLMENT_TYPE:
            raise BadRequestException(message="Checkout session is not a program enrollment")

        user_id = metadata.get("user_id")
        program = await Program.get_by_id(self.db_session, metadata.get("program_id") or "")
        if not user_id or not program:
            raise ProgramNotFoundException()

        cohort = None
        if metadata.get("cohort_id"):
            cohort = await Cohort.get_for_program(
                self.db_session, metadata["cohort_id"], program.id
            )
            if not cohort:
                raise CohortNotFoundException()

        original_amount = int(metadata.get("original_amount_cents") or program.price_cents)
        discount_amount = int(metadata.get("discount_amount_cents") or 0)
        discount_code_id = metadata.get("discount_code_id") or None
        discount = None
        if discount_code_id:
            discount = DiscountOutcome(
                is_valid=True,
                code=metadata.get("discount_code") or "",
                original_amount=original_amount,
                discount_amount=discount_amount,
                final_amount=max(0, original_amount - discount_amount),
                discount_code_id=discount_code_id,
            )

        try:
            result = await self.lifecycle.create_enrollment(
                user_id,
                program,
                cohort,
                opted_into_community=metadata.get("join_community", "true") != "false",
                amount_paid=amount_paid,
                discount_code_id=discount_code_id,
                discount_amount=discount_amount,
                checkout_session_id=session_id,
            )
        except AllocationContentionException as e:
            await self._record_after_contention(e, discount)
            raise
        except (AlreadyEnrolledException, IntegrityError):
            # Webhook and verify-payment racing on the same session
            await self.db_session.rollback()
            existing = await Enrollment.get_by_checkout_session(self.db_session, session_id)
            if existing:
                return await self._already_processed(existing)
            raise

        logger.info(f"Completed paid enrollment {result.enrollment.id} for session {session_id}")
        result.enrollment = await self._record_enrollment_discount(
            result.enrollment, result.warnings, discount
        )

        return EnrollmentOutcome(enrollment=result.enrollment, warnings=result.warnings)

    async def verify_payment(self, user: User, session_id: str) -> EnrollmentOutcome:
        """Client-side confirmation fallback for when the webhook is late."""
        existing = await Enrollment.get_by_checkout_session(self.db_session, session_id)
        if existing:
            if existing.user_id != user.id and not user.is_staff:
                raise ForbiddenException(message="Session does not belong to this user")
            return await self._already_processed(existing)

        organization = await Organization.get_by_id(self.db_session, user.organization_id)
        account_id = organization.stripe_connect_account_id if organization else None
        if not account_id:
            raise PaymentSetupMissingException(message="Payment configuration error")

        try:
            session = await self.stripe_service.retrieve_checkout_session(session_id, account_id)
        except stripe.StripeError as e:
            raise PaymentProviderException(message=f"Could not verify payment: {e}")

        if session["payment_status"] != "paid":
            raise PaymentNotCompletedException()

        metadata = session["metadata"]
        if metadata.get("user_id") != user.id and not user.is_staff:
            raise ForbiddenException(message="Session does not belong to this user")

        return await self.complete_paid_enrollment(
            session_id, metadata, session.get("amount_total") or 0
        )

    async def _validate_cohort(
        self, program: Program, cohort_id: Optional[str]
    ) -> Optional[Cohort]:
        if not program.is_group:
            return None
        if not cohort_id:
            raise CohortRequiredException()

        cohort = await Cohort.get_for_program(self.db_session, cohort_id, program.id)
        if not cohort:
            raise CohortNotFoundException()
        if not cohort.enrollment_open:
            raise CohortClosedException()
        if not cohort.has_capacity:
            raise CohortFullException()
        return cohort

    async def _resolve_discount(
        self,
        user: User,
        program: Program,
        discount_code: str,
        now: Optional[datetime],
    ) -> Optional[DiscountOutcome]:
        """Applied discount, None for a silently ignored alumni code."""
        organization = await Organization.get_by_id(self.db_session, program.organization_id)
        outcome = await self.discount_service.resolve(
            code=discount_code,
            actor_id=user.id,
            organization_id=program.organization_id,
            target_id=program.id,
            target_kind=TargetKind.PROGRAM,
            original_amount=program.price_cents,
            alumni_settings=AlumniDiscountSettings.from_organization(organization),
            actor_is_alumni=user.is_alumni,
            now=now.astimezone(timezone.utc) if now else None,
        )
        if outcome.is_valid:
            logger.info(
                f"Discount {outcome.code} applied for user {user.id}: "
                f"{outcome.original_amount} -> {outcome.final_amount}"
            )
            return outcome
        if outcome.is_alumni:
            logger.info(f"Alumni discount not applicable for user {user.id}: {outcome.error_message}")
            return None
        raise InvalidDiscountException(message=outcome.error_message)

    async def _enroll_free(
        self,
        user_id: str,
        program: Program,
        cohort: Optional[Cohort],
        discount: Optional[DiscountOutcome],
        opted_into_community: bool,
        now: Optional[datetime],
    ) -> EnrollmentOutcome:
        try:
            result = await self.lifecycle.create_enrollment(
                user_id,
                program,
                cohort,
                opted_into_community=opted_into_community,
                amount_paid=0,
                discount_code_id=discount.discount_code_id if discount else None,
                discount_amount=discount.discount_amount if discount else 0,
                now=now,
            )
        except AllocationContentionException as e:
            await self._record_after_contention(e, discount)
            raise

        result.enrollment = await self._record_enrollment_discount(
            result.enrollment, result.warnings, discount
        )

        return EnrollmentOutcome(
            enrollment=result.enrollment, discount=discount, warnings=result.warnings
        )

    async def _start_checkout(
        self,
        user: User,
        program: Program,
        cohort: Optional[Cohort],
        original_amount: int,
        final_amount: int,
        discount: Optional[DiscountOutcome],
        opted_into_community: bool,
    ) -> EnrollmentOutcome:
        organization = await Organization.get_by_id(self.db_session, program.organization_id)
        account_id = organization.stripe_connect_account_id if organization else None
        if not account_id:
            raise PaymentSetupMissingException()

        fee_percent = organization.platform_fee_percent
        if fee_percent is None:
            fee_percent = Decimal(str(settings.DEFAULT_PLATFORM_FEE_PERCENT))

        description = (
            f"{program.name} - {cohort.name} ({program.length_days} days)"
            if cohort
            else f"{program.name} ({program.length_days} days)"
        )
        if discount and discount.discount_amount:
            description += (
                f" (Originally {original_amount / 100:.2f}, "
                f"-{discount.discount_amount / 100:.2f} discount)"
            )

        try:
            customer_id = user.get_connected_customer_id(account_id)
            if not customer_id:
                customer_id = await self.stripe_service.create_customer(
                    email=user.email,
                    stripe_account=account_id,
                    name=user.full_name,
                    metadata={"user_id": user.id},
                )
                user.set_connected_customer_id(account_id, customer_id)
                await self.db_session.commit()

            session = await self.stripe_service.create_checkout_session(
                amount_cents=final_amount,
                currency=program.currency,
                product_name=program.name,
                description=description,
                image_url=program.cover_image_url,
                metadata=build_checkout_metadata(
                    user.id, program, cohort, original_amount, discount, opted_into_community
                ),
                customer_id=customer_id,
                stripe_account=account_id,
                application_fee_amount=calculate_platform_fee(final_amount, Decimal(fee_percent)),
                success_url=f"{settings.FRONTEND_URL}/programs/enrollment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{settings.FRONTEND_URL}/discover/programs/{program.id}?checkout=canceled",
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout could not be started for program {program.id}: {e}")
            raise PaymentProviderException(message=f"Could not start checkout: {e}")

        logger.info(f"Checkout session {session['id']} created for user {user.id}, program {program.id}")
        return EnrollmentOutcome(
            requires_payment=True,
            checkout_url=session["url"],
            session_id=session["id"],
            discount=discount,
        )

    async def _record_enrollment_discount(
        self,
        enrollment: Enrollment,
        warnings: List[str],
        discount: Optional[DiscountOutcome] = None,
    ) -> Enrollment:
        """
        Write the discount usage for a committed enrollment, at most once.

        Without an outcome the amounts come from the enrollment's own pricing
        snapshot, which is how resumed and replayed enrollments catch up on a
        usage that was never written.
        """
        enrollment_id = enrollment.id
        discount_code_id = enrollment.discount_code_id
        if not discount_code_id:
            return enrollment
        if await DiscountCodeUsage.get_for_enrollment(self.db_session, enrollment_id):
            return enrollment

        if discount is None:
            discount = DiscountOutcome(
                is_valid=True,
                code="",
                original_amount=enrollment.amount_paid + enrollment.discount_amount,
                discount_amount=enrollment.discount_amount,
                final_amount=enrollment.amount_paid,
                discount_code_id=discount_code_id,
            )

        try:
            await self.discount_service.record_usage(
                discount,
                user_id=enrollment.user_id,
                organization_id=enrollment.organization_id,
                program_id=enrollment.program_id,
                enrollment_id=enrollment_id,
            )
        except Exception as e:
            logger.warning(f"Failed to record discount usage for enrollment {enrollment_id}: {e}")
            await self.db_session.rollback()
            warnings.append(f"Discount usage was not recorded: {e}")
            return await Enrollment.get_by_id(self.db_session, enrollment_id)
        return enrollment

    async def _record_after_contention(
        self,
        error: AllocationContentionException,
        discount: Optional[DiscountOutcome],
    ) -> None:
        # The enrollment is already committed, only its squad is missing
        enrollment_id = error.data.get("enrollment_id")
        if not enrollment_id or discount is None:
            return
        enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
        if enrollment:
            await self._record_enrollment_discount(enrollment, [], discount)

    @staticmethod
    def _needs_squad(enrollment: Enrollment, program: Program) -> bool:
        return (
            program.is_group
            and enrollment.cohort_id is not None
            and enrollment.squad_id is None
        )

    async def _resume(self, enrollment: Enrollment, program: Program) -> EnrollmentOutcome:
        cohort = await Cohort.get_by_id(self.db_session, enrollment.cohort_id)
        result = await self.lifecycle.resume_enrollment(enrollment, program, cohort)
        result.enrollment = await self._record_enrollment_discount(
            result.enrollment, result.warnings
        )
        return EnrollmentOutcome(enrollment=result.enrollment, warnings=result.warnings)

    async def _already_processed(self, enrollment: Enrollment) -> EnrollmentOutcome:
        program = await Program.get_by_id(self.db_session, enrollment.program_id)
        if program and self._needs_squad(enrollment, program):
            outcome = await self._resume(enrollment, program)
        else:
            warnings: List[str] = []
            enrollment = await self._record_enrollment_discount(enrollment, warnings)
            outcome = EnrollmentOutcome(enrollment=enrollment, warnings=warnings)
        outcome.already_processed = True
        return outcome
