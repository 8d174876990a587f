"""Enrollment creation and post-enrollment provisioning."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.program import Cohort, Program, ProgramType
from app.services.chat_service import ChatService
from app.services.coaching_service import CoachingProvisioner
from app.services.directory_service import OrganizationDirectory
from app.services.squad_service import SquadAllocator
from core.config import config as settings
from core.exceptions.enrollment import (
    AllocationContentionException,
    AlreadyEnrolledException,
    CohortRequiredException,
    ConflictingActiveEnrollmentException,
)
from core.logging import get_logger

logger = get_logger(__name__)


def compute_enrollment_start(
    program_type: ProgramType,
    cohort_start_date: Optional[date] = None,
    now: Optional[datetime] = None,
    cutoff_hour: Optional[int] = None,
) -> Tuple[EnrollmentStatus, date]:
    """
    Initial status and start date of a new enrollment.

    Group programs wait for a cohort that starts in the future (by calendar
    date) and are active from today otherwise. Individual programs are always
    active and start today when enrolling before the cutoff hour, tomorrow
    after it.
    """
    now = now or datetime.now()
    today = now.date()

    if program_type == ProgramType.GROUP:
        if cohort_start_date and cohort_start_date > today:
            return EnrollmentStatus.UPCOMING, cohort_start_date
        return EnrollmentStatus.ACTIVE, today

    cutoff = settings.INDIVIDUAL_START_CUTOFF_HOUR if cutoff_hour is None else cutoff_hour
    if now.hour < cutoff:
        return EnrollmentStatus.ACTIVE, today
    return EnrollmentStatus.ACTIVE, today + timedelta(days=1)


@dataclass
class EnrollmentResult:
    """A committed enrollment plus non-fatal provisioning problems."""

    enrollment: Enrollment
    warnings: List[str] = field(default_factory=list)
    coaching_relationship_id: Optional[str] = None
    resumed: bool = False


class EnrollmentLifecycle:
    """
    Creates enrollments and provisions their delivery unit.

    Write order: enrollment row, squad placement, cohort counter, coaching.
    Only the enrollment row is mandatory; everything after it is reported as a
    warning when it fails. Losing the squad placement race is the exception:
    it is surfaced as a retryable error, and the retry resumes placement for
    the already committed enrollment.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        chat_service: Optional[ChatService] = None,
        squad_allocator: Optional[SquadAllocator] = None,
        coaching_provisioner: Optional[CoachingProvisioner] = None,
    ):
        self.db_session = db_session
        chat_service = chat_service or ChatService()
        directory = OrganizationDirectory(db_session)
        self.squad_allocator = squad_allocator or SquadAllocator(
            db_session, chat_service=chat_service, directory=directory
        )
        self.coaching_provisioner = coaching_provisioner or CoachingProvisioner(
            db_session, chat_service=chat_service, directory=directory
        )

    async def check_conflicts(self, user_id: str, program: Program) -> None:
        """
        Reject duplicate and conflicting enrollments.

        This is a plain read before the write; two simultaneous submissions can
        both pass it.

        Raises:
            AlreadyEnrolledException: active/upcoming enrollment in this program
            ConflictingActiveEnrollmentException: active enrollment in another
                program of the same type
        """
        existing = await Enrollment.get_open_for_program(self.db_session, user_id, program.id)
        if existing:
            raise AlreadyEnrolledException(data={"enrollment_id": existing.id})

        conflicting = await Enrollment.get_active_of_type(
            self.db_session, user_id, program.program_type
        )
        if conflicting:
            raise ConflictingActiveEnrollmentException(
                message=f"You already have an active {program.program_type.value} program",
                data={"enrollment_id": conflicting.id, "program_id": conflicting.program_id},
            )

    async def create_enrollment(
        self,
        user_id: str,
        program: Program,
        cohort: Optional[Cohort] = None,
        opted_into_community: bool = True,
        amount_paid: int = 0,
        discount_code_id: Optional[str] = None,
        discount_amount: int = 0,
        checkout_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EnrollmentResult:
        """
        Create an enrollment and provision its squad or coaching.

        Args:
            user_id: Member being enrolled
            program: Program to enroll in
            cohort: Cohort for group programs
            opted_into_community: Join the program's community squad (individual)
            amount_paid: Amount charged in minor units
            discount_code_id: Applied discount code, for the pricing snapshot
            discount_amount: Discount in minor units, for the pricing snapshot
            checkout_session_id: Stripe session that paid for this enrollment
            now: Clock used for start date rules

        Returns:
            EnrollmentResult with the committed enrollment and any warnings.

        Raises:
            CohortRequiredException: group program without a cohort
            AlreadyEnrolledException, ConflictingActiveEnrollmentException
            AllocationContentionException: enrollment committed but squad
                placement kept losing races; retrying resumes placement
        """
        if program.is_group and cohort is None:
            raise CohortRequiredException()

        await self.check_conflicts(user_id, program)

        now = now or datetime.now()
        status, started_at = compute_enrollment_start(
            program.program_type, cohort.start_date if cohort else None, now
        )

        enrollment = await Enrollment.create_enrollment(
            self.db_session,
            user_id=user_id,
            program_id=program.id,
            organization_id=program.organization_id,
            cohort_id=cohort.id if cohort else None,
            status=status,
            started_at=started_at,
            last_assigned_day_index=0,
            amount_paid=amount_paid,
            paid_at=datetime.now(timezone.utc) if amount_paid > 0 else None,
            discount_code_id=discount_code_id,
            discount_amount=discount_amount,
            stripe_checkout_session_id=checkout_session_id,
        )
        logger.info(
            f"Created enrollment {enrollment.id}: user {user_id}, program {program.id}, "
            f"status {status.value}, starts {started_at.isoformat()}"
        )

        return await self._provision(
            enrollment, program, cohort, opted_into_community, now, count_in_cohort=True
        )

    async def resume_enrollment(
        self,
        enrollment: Enrollment,
        program: Program,
        cohort: Optional[Cohort],
    ) -> EnrollmentResult:
        """Finish squad placement for a group enrollment that has no squad yet."""
        logger.info(f"Resuming provisioning for enrollment {enrollment.id}")
        result = await self._provision(
            enrollment, program, cohort, opted_into_community=False, now=None,
            count_in_cohort=False,
        )
        result.resumed = True
        return result

    async def _provision(
        self,
        enrollment: Enrollment,
        program: Program,
        cohort: Optional[Cohort],
        opted_into_community: bool,
        now: Optional[datetime],
        count_in_cohort: bool,
    ) -> EnrollmentResult:
        enrollment_id = enrollment.id
        user_id = enrollment.user_id
        is_group = program.is_group
        organization_id = program.organization_id
        program_id = program.id
        has_squad = bool(enrollment.squad_id)
        community_squad_id = program.client_community_squad_id
        cohort_id = cohort.id if cohort else None
        result = EnrollmentResult(enrollment=enrollment)
        contention: Optional[AllocationContentionException] = None

        if is_group and cohort is not None and not has_squad:
            try:
                allocation = await self.squad_allocator.allocate(program, cohort, user_id)
                result.warnings.extend(allocation.warnings)
                enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
                enrollment.squad_id = allocation.squad_id
                await self.db_session.commit()
            except AllocationContentionException as e:
                contention = e
            except Exception as e:
                logger.warning(f"Squad placement failed for enrollment {enrollment_id}: {e}")
                await self.db_session.rollback()
                result.warnings.append(f"Squad placement failed: {e}")

        if cohort_id and count_in_cohort:
            try:
                await Cohort.increment_enrollment(self.db_session, cohort_id)
            except Exception as e:
                logger.warning(f"Failed to update enrollment count of cohort {cohort_id}: {e}")
                await self.db_session.rollback()
                result.warnings.append(f"Cohort enrollment count was not updated: {e}")

        if contention is not None:
            logger.error(f"Enrollment {enrollment_id} saved without a squad: {contention.message}")
            contention.data = {**(contention.data or {}), "enrollment_id": enrollment_id}
            raise contention

        if not is_group:
            try:
                coaching = await self.coaching_provisioner.provision(
                    organization_id, program_id, user_id,
                    today=(now or datetime.now()).date(),
                )
                result.warnings.extend(coaching.warnings)
                result.coaching_relationship_id = coaching.relationship_id
            except Exception as e:
                logger.warning(f"Coaching setup failed for enrollment {enrollment_id}: {e}")
                await self.db_session.rollback()
                result.warnings.append(f"Coaching setup failed: {e}")

            if community_squad_id and opted_into_community:
                await self._join_community(enrollment_id, community_squad_id, user_id, result)

        result.enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
        await self.db_session.refresh(result.enrollment)
        return result

    async def _join_community(
        self,
        enrollment_id: str,
        squad_id: str,
        user_id: str,
        result: EnrollmentResult,
    ) -> None:
        try:
            result.warnings.extend(
                await self.squad_allocator.add_to_community_squad(squad_id, user_id)
            )
            enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
            enrollment.joined_community = True
            await self.db_session.commit()
        except Exception as e:
            logger.warning(f"Failed to add user {user_id} to community squad {squad_id}: {e}")
            await self.db_session.rollback()
            result.warnings.append(f"Could not join the community squad: {e}")
