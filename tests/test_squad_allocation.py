"""Tests for squad placement in group programs."""

import asyncio
import re
from unittest.mock import AsyncMock, patch

import pytest

from app.models.squad import Squad
from app.services.squad_service import (
    SquadAllocator,
    generate_invite_code,
    pick_squad_coach,
)
from core.exceptions.enrollment import AllocationContentionException


class TestCoachSelection:
    """Tests for pick_squad_coach."""

    def test_round_robin_by_ordinal(self):
        pool = ["A", "B", "C"]
        assert [pick_squad_coach(n, pool, False) for n in range(1, 7)] == [
            "A", "B", "C", "A", "B", "C",
        ]

    def test_coach_in_squads_uses_administrator(self):
        assert pick_squad_coach(2, ["A", "B"], True, administrator_id="admin") == "admin"

    def test_no_pool_no_coach(self):
        assert pick_squad_coach(1, [], False) is None

    def test_invite_code_format(self):
        assert re.fullmatch(r"GA-[A-Z0-9]{6}", generate_invite_code())


class TestSquadAllocator:
    """Tests for SquadAllocator.allocate."""

    async def test_first_member_creates_squad(
        self, db_session, group_program, cohort, coaches, chat_service
    ):
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        allocation = await allocator.allocate(group_program, cohort, "user-1")

        squad = await Squad.get_by_id(db_session, allocation.squad_id)
        assert allocation.created is True
        assert allocation.squad_number == 1
        assert squad.member_ids == ["user-1"]
        assert squad.member_count == 1
        assert squad.coach_id == coaches[0].id
        assert squad.is_auto_created is True
        assert squad.name == "Group Program - Spring Cohort - Squad 1"
        assert re.fullmatch(r"GA-[A-Z0-9]{6}", squad.invite_code)

        # Chat channel opened with the coach, member added on join
        assert squad.chat_channel_id == f"squad-{squad.id}"
        assert chat_service.channels[squad.chat_channel_id]["members"] == [
            coaches[0].id,
            "user-1",
        ]

    async def test_fills_squad_then_opens_next(
        self, db_session, group_program, cohort, coaches, chat_service
    ):
        """A full squad of 10 sends the 11th member to squad #2 with the next coach."""
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        first_ten = [
            await allocator.allocate(group_program, cohort, f"user-{i}") for i in range(10)
        ]
        eleventh = await allocator.allocate(group_program, cohort, "user-10")

        assert {a.squad_number for a in first_ten} == {1}
        assert eleventh.created is True
        assert eleventh.squad_number == 2

        squads = await Squad.get_for_cohort(db_session, cohort.id)
        assert [s.member_count for s in squads] == [10, 1]
        assert squads[1].coach_id == coaches[1].id

    async def test_round_robin_coaches(
        self, db_session, create_program, create_cohort, coaches, chat_service
    ):
        program = await create_program(
            name="Tiny Squads",
            squad_capacity=1,
            assigned_coach_ids=[coach.id for coach in coaches],
        )
        cohort = await create_cohort(program)
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        for i in range(6):
            await allocator.allocate(program, cohort, f"user-{i}")

        squads = await Squad.get_for_cohort(db_session, cohort.id)
        a, b, c = (coach.id for coach in coaches)
        assert [s.squad_number for s in squads] == [1, 2, 3, 4, 5, 6]
        assert [s.coach_id for s in squads] == [a, b, c, a, b, c]

    async def test_coach_in_squads_assigns_administrator(
        self, db_session, create_program, create_cohort, admin_user, coaches, chat_service
    ):
        program = await create_program(
            coach_in_squads=True, assigned_coach_ids=[coaches[0].id]
        )
        cohort = await create_cohort(program)
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        allocation = await allocator.allocate(program, cohort, "user-1")

        squad = await Squad.get_by_id(db_session, allocation.squad_id)
        assert squad.coach_id == admin_user.id

    async def test_allocation_is_idempotent(
        self, db_session, group_program, cohort, chat_service
    ):
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        first = await allocator.allocate(group_program, cohort, "user-1")
        second = await allocator.allocate(group_program, cohort, "user-1")

        squad = await Squad.get_by_id(db_session, first.squad_id)
        assert second.squad_id == first.squad_id
        assert second.already_member is True
        assert squad.member_ids == ["user-1"]
        assert squad.member_count == 1

    async def test_chat_failure_is_a_warning(
        self, db_session, group_program, cohort, chat_service
    ):
        chat_service.fail = True
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        allocation = await allocator.allocate(group_program, cohort, "user-1")

        squad = await Squad.get_by_id(db_session, allocation.squad_id)
        assert squad.member_ids == ["user-1"]
        assert squad.chat_channel_id is None
        assert any("chat channel" in w for w in allocation.warnings)

    async def test_gives_up_after_max_attempts(
        self, db_session, group_program, cohort, chat_service
    ):
        allocator = SquadAllocator(db_session, chat_service=chat_service, max_attempts=3)

        with patch.object(Squad, "try_add_member", AsyncMock(return_value=False)) as cas:
            with pytest.raises(AllocationContentionException) as exc_info:
                await allocator.allocate(group_program, cohort, "user-1")

        assert cas.await_count == 3
        assert exc_info.value.code == 503

    async def test_concurrent_allocation_never_exceeds_capacity(
        self, session_factory, group_program, cohort, chat_service
    ):
        user_ids = [f"user-{i}" for i in range(25)]

        async def place(user_id):
            async with session_factory() as session:
                allocator = SquadAllocator(session, chat_service=chat_service, max_attempts=60)
                return await allocator.allocate(group_program, cohort, user_id)

        allocations = await asyncio.gather(*(place(user_id) for user_id in user_ids))

        async with session_factory() as session:
            squads = await Squad.get_for_cohort(session, cohort.id)

        members = [m for squad in squads for m in squad.member_ids]
        assert sorted(members) == sorted(user_ids)
        assert all(squad.member_count <= squad.capacity for squad in squads)
        assert all(squad.member_count == len(squad.member_ids) for squad in squads)
        assert [squad.squad_number for squad in squads] == [1, 2, 3]
        assert {a.squad_id for a in allocations} == {squad.id for squad in squads}


class TestSquadRevision:
    """Tests for the guarded membership write."""

    async def test_stale_revision_is_rejected(
        self, db_session, group_program, cohort, chat_service
    ):
        allocator = SquadAllocator(db_session, chat_service=chat_service)
        allocation = await allocator.allocate(group_program, cohort, "user-1")

        # Revision 0 was consumed by the first placement
        updated = await Squad.try_add_member(
            db_session, allocation.squad_id, 0, ["user-1", "user-2"]
        )

        squad = await Squad.get_by_id(db_session, allocation.squad_id)
        assert updated is False
        assert squad.member_ids == ["user-1"]
        assert squad.revision == 1

    async def test_full_squad_rejects_write(
        self, db_session, create_program, create_cohort, chat_service
    ):
        program = await create_program(squad_capacity=1)
        cohort = await create_cohort(program)
        allocator = SquadAllocator(db_session, chat_service=chat_service)
        allocation = await allocator.allocate(program, cohort, "user-1")

        updated = await Squad.try_add_member(
            db_session, allocation.squad_id, 1, ["user-1", "user-2"]
        )

        assert updated is False


class TestCommunitySquad:
    """Tests for SquadAllocator.add_to_community_squad."""

    async def test_ignores_capacity_and_is_idempotent(
        self, db_session, organization, chat_service
    ):
        squad = await Squad.create_squad(
            db_session,
            organization_id=organization.id,
            name="Community",
            member_ids=["existing"],
            member_count=1,
            capacity=1,
        )
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        await allocator.add_to_community_squad(squad.id, "user-1")
        await allocator.add_to_community_squad(squad.id, "user-1")

        squad = await Squad.get_by_id(db_session, squad.id)
        assert squad.member_ids == ["existing", "user-1"]
        assert squad.member_count == 2

    async def test_missing_squad(self, db_session, chat_service):
        allocator = SquadAllocator(db_session, chat_service=chat_service)

        with pytest.raises(LookupError):
            await allocator.add_to_community_squad("missing", "user-1")
