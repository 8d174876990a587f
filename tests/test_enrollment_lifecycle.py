"""Tests for enrollment creation, start dates and provisioning."""

import random
from collections import Counter
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.models.coaching import CoachingRelationship
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.program import ProgramType
from app.models.squad import Squad
from app.models.user import Role, User
from app.services.lifecycle_service import EnrollmentLifecycle, compute_enrollment_start
from app.services.squad_service import SquadAllocator
from core.exceptions.enrollment import (
    AllocationContentionException,
    AlreadyEnrolledException,
    CohortRequiredException,
    ConflictingActiveEnrollmentException,
)


class TestStartDate:
    """Tests for compute_enrollment_start."""

    now = datetime(2026, 3, 10, 9, 0)

    def test_future_cohort_is_upcoming(self):
        cohort_start = self.now.date() + timedelta(days=5)

        status, started_at = compute_enrollment_start(ProgramType.GROUP, cohort_start, self.now)

        assert status == EnrollmentStatus.UPCOMING
        assert started_at == cohort_start

    def test_started_cohort_is_active_today(self):
        status, started_at = compute_enrollment_start(
            ProgramType.GROUP, self.now.date() - timedelta(days=1), self.now
        )

        assert status == EnrollmentStatus.ACTIVE
        assert started_at == self.now.date()

    def test_cohort_starting_today_is_active(self):
        status, started_at = compute_enrollment_start(
            ProgramType.GROUP, self.now.date(), self.now.replace(hour=23)
        )

        assert status == EnrollmentStatus.ACTIVE
        assert started_at == self.now.date()

    @pytest.mark.parametrize(
        "hour,expected_offset",
        [(0, 0), (9, 0), (11, 0), (12, 1), (15, 1), (23, 1)],
    )
    def test_individual_start_cutoff(self, hour, expected_offset):
        now = self.now.replace(hour=hour)

        status, started_at = compute_enrollment_start(ProgramType.INDIVIDUAL, None, now, 12)

        assert status == EnrollmentStatus.ACTIVE
        assert started_at == now.date() + timedelta(days=expected_offset)


class TestGroupEnrollment:
    """Tests for group program enrollments."""

    async def test_enrollment_gets_squad_and_counts_in_cohort(
        self, db_session, group_program, cohort, test_user, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(test_user.id, group_program, cohort)

        enrollment = result.enrollment
        await db_session.refresh(cohort)
        assert enrollment.status == EnrollmentStatus.UPCOMING
        assert enrollment.started_at == cohort.start_date
        assert enrollment.squad_id is not None
        assert enrollment.last_assigned_day_index == 0
        assert cohort.current_enrollment == 1
        assert result.warnings == []

        squad = await Squad.get_by_id(db_session, enrollment.squad_id)
        assert squad.member_ids == [test_user.id]

    async def test_group_program_requires_cohort(
        self, db_session, group_program, test_user, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        with pytest.raises(CohortRequiredException):
            await lifecycle.create_enrollment(test_user.id, group_program, None)

    async def test_duplicate_enrollment_rejected(
        self, db_session, group_program, cohort, test_user, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)
        await lifecycle.create_enrollment(test_user.id, group_program, cohort)

        with pytest.raises(AlreadyEnrolledException):
            await lifecycle.create_enrollment(test_user.id, group_program, cohort)

    async def test_one_active_program_per_type(
        self, db_session, create_program, create_cohort, test_user, chat_service
    ):
        first = await create_program(name="First")
        second = await create_program(name="Second")
        running = await create_cohort(first, start_date=date.today() - timedelta(days=1))
        other = await create_cohort(second)
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(test_user.id, first, running)
        assert result.enrollment.status == EnrollmentStatus.ACTIVE

        with pytest.raises(ConflictingActiveEnrollmentException):
            await lifecycle.create_enrollment(test_user.id, second, other)

    async def test_upcoming_enrollment_does_not_block_other_programs(
        self, db_session, create_program, create_cohort, test_user, chat_service
    ):
        first = await create_program(name="First")
        second = await create_program(name="Second")
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        await lifecycle.create_enrollment(test_user.id, first, await create_cohort(first))
        result = await lifecycle.create_enrollment(
            test_user.id, second, await create_cohort(second)
        )

        assert result.enrollment.status == EnrollmentStatus.UPCOMING

    @pytest.mark.parametrize("seed", range(8))
    async def test_random_sequences_keep_one_active_program_per_type(
        self, db_session, create_program, create_cohort, create_test_user, chat_service, seed
    ):
        rng = random.Random(seed)
        user_ids = [
            (await create_test_user(f"member{i}@example.com", f"Member {i}")).id for i in range(2)
        ]
        today = date.today()
        options = []
        for i in range(3):
            program = await create_program(name=f"Group {i}")
            running = await create_cohort(program, start_date=today - timedelta(days=1))
            future = await create_cohort(program, name="Later", start_date=today + timedelta(days=5))
            options += [(program, running, False), (program, future, True)]
        for i in range(2):
            options.append(
                (await create_program(name=f"Solo {i}", program_type=ProgramType.INDIVIDUAL), None, False)
            )
        types = {program.id: program.program_type for program, _, _ in options}
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        # Open enrollments per user: program id -> (type, status)
        expected = {user_id: {} for user_id in user_ids}
        for _ in range(14):
            user_id = rng.choice(user_ids)
            program, cohort, starts_later = rng.choice(options)
            program_id = program.id
            program_type = types[program_id]
            opened = expected[user_id]
            active_types = {t for t, s in opened.values() if s == EnrollmentStatus.ACTIVE}

            if program_id in opened:
                with pytest.raises(AlreadyEnrolledException):
                    await lifecycle.create_enrollment(user_id, program, cohort)
            elif program_type in active_types:
                with pytest.raises(ConflictingActiveEnrollmentException):
                    await lifecycle.create_enrollment(user_id, program, cohort)
            else:
                result = await lifecycle.create_enrollment(user_id, program, cohort)
                status = result.enrollment.status
                assert status == (
                    EnrollmentStatus.UPCOMING if starts_later else EnrollmentStatus.ACTIVE
                )
                opened[program_id] = (program_type, status)

            for member_id in user_ids:
                enrollments = await Enrollment.get_by_user_id(db_session, member_id)
                active = Counter(
                    types[e.program_id]
                    for e in enrollments
                    if e.status == EnrollmentStatus.ACTIVE
                )
                assert all(count <= 1 for count in active.values())
                assert {e.program_id: e.status for e in enrollments} == {
                    pid: status for pid, (_, status) in expected[member_id].items()
                }

    async def test_conflict_check_is_read_only(
        self, db_session, group_program, test_user, chat_service
    ):
        """Two submissions checked before either writes both pass (accepted limitation)."""
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        await lifecycle.check_conflicts(test_user.id, group_program)
        await lifecycle.check_conflicts(test_user.id, group_program)

    async def test_chat_failure_does_not_block_enrollment(
        self, db_session, group_program, cohort, test_user, chat_service
    ):
        chat_service.fail = True
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(test_user.id, group_program, cohort)

        assert result.enrollment.squad_id is not None
        assert result.warnings

    async def test_contention_keeps_enrollment_and_resume_places_it(
        self, db_session, group_program, cohort, test_user, chat_service
    ):
        allocator = SquadAllocator(db_session, chat_service=chat_service)
        lifecycle = EnrollmentLifecycle(
            db_session, chat_service=chat_service, squad_allocator=allocator
        )
        real_allocate = allocator.allocate
        allocator.allocate = AsyncMock(side_effect=AllocationContentionException())

        with pytest.raises(AllocationContentionException):
            await lifecycle.create_enrollment(test_user.id, group_program, cohort)

        await db_session.refresh(cohort)
        assert cohort.current_enrollment == 1

        enrollment = await Enrollment.get_open_for_program(
            db_session, test_user.id, group_program.id
        )
        assert enrollment is not None
        assert enrollment.squad_id is None

        allocator.allocate = real_allocate
        result = await lifecycle.resume_enrollment(enrollment, group_program, cohort)

        await db_session.refresh(cohort)
        assert result.resumed is True
        assert result.enrollment.squad_id is not None
        assert cohort.current_enrollment == 1


class TestIndividualEnrollment:
    """Tests for individual (1:1 coaching) program enrollments."""

    morning = datetime(2026, 3, 10, 9, 0)

    async def test_coaching_relationship_provisioned(
        self, db_session, individual_program, test_user, admin_user, organization, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(
            test_user.id, individual_program, now=self.morning
        )

        assert result.enrollment.status == EnrollmentStatus.ACTIVE
        assert result.enrollment.started_at == self.morning.date()
        assert result.enrollment.squad_id is None

        relationship = await CoachingRelationship.get_for_client(
            db_session, organization.id, test_user.id
        )
        assert relationship.id == result.coaching_relationship_id
        assert relationship.coach_id == admin_user.id
        assert relationship.program_id == individual_program.id
        assert relationship.coaching_plan == "monthly"
        assert relationship.start_date == self.morning.date()
        assert relationship.next_call["location"] == "Chat"
        assert relationship.chat_channel_id == f"coaching-{relationship.id}"
        assert chat_service.channels[relationship.chat_channel_id]["members"] == [
            test_user.id,
            admin_user.id,
        ]

        client = await db_session.get(User, test_user.id, populate_existing=True)
        assert client.coach_id == admin_user.id
        assert client.is_coaching_client is True
        assert client.coaching_status == "active"

    async def test_afternoon_enrollment_starts_tomorrow(
        self, db_session, individual_program, test_user, admin_user, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)
        afternoon = self.morning.replace(hour=15)

        result = await lifecycle.create_enrollment(
            test_user.id, individual_program, now=afternoon
        )

        assert result.enrollment.started_at == afternoon.date() + timedelta(days=1)

    async def test_no_coach_available_is_a_warning(
        self, db_session, individual_program, test_user, organization, chat_service
    ):
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(
            test_user.id, individual_program, now=self.morning
        )

        assert result.enrollment.id is not None
        assert result.coaching_relationship_id is None
        assert any("No coach available" in w for w in result.warnings)
        assert (
            await CoachingRelationship.get_for_client(db_session, organization.id, test_user.id)
            is None
        )

    async def test_owner_coaches_when_no_admin(
        self, db_session, individual_program, test_user, create_test_user, chat_service
    ):
        owner = await create_test_user("owner@example.com", "Org Owner", role=Role.OWNER)
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(
            test_user.id, individual_program, now=self.morning
        )

        relationship = await CoachingRelationship.get_for_client(
            db_session, owner.organization_id, test_user.id
        )
        assert result.coaching_relationship_id == relationship.id
        assert relationship.coach_id == owner.id

    async def test_joins_community_squad(
        self, db_session, create_program, organization, test_user, admin_user, chat_service
    ):
        community = await Squad.create_squad(
            db_session,
            organization_id=organization.id,
            name="Client Community",
            member_ids=[],
            member_count=0,
            capacity=1,
        )
        program = await create_program(
            program_type=ProgramType.INDIVIDUAL, client_community_squad_id=community.id
        )
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(test_user.id, program, now=self.morning)

        community = await Squad.get_by_id(db_session, community.id)
        assert result.enrollment.joined_community is True
        assert community.member_ids == [test_user.id]

    async def test_community_opt_out(
        self, db_session, create_program, organization, test_user, admin_user, chat_service
    ):
        community = await Squad.create_squad(
            db_session,
            organization_id=organization.id,
            name="Client Community",
            member_ids=[],
            member_count=0,
            capacity=10,
        )
        program = await create_program(
            program_type=ProgramType.INDIVIDUAL, client_community_squad_id=community.id
        )
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(
            test_user.id, program, opted_into_community=False, now=self.morning
        )

        community = await Squad.get_by_id(db_session, community.id)
        assert result.enrollment.joined_community is False
        assert community.member_ids == []

    async def test_missing_community_squad_is_a_warning(
        self, db_session, create_program, test_user, admin_user, chat_service
    ):
        program = await create_program(
            program_type=ProgramType.INDIVIDUAL, client_community_squad_id="gone"
        )
        lifecycle = EnrollmentLifecycle(db_session, chat_service=chat_service)

        result = await lifecycle.create_enrollment(test_user.id, program, now=self.morning)

        assert result.enrollment.joined_community is False
        assert any("community squad" in w for w in result.warnings)
