"""Squad placement for group programs."""

import secrets
import string
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.program import Cohort, Program
from app.models.squad import Squad
from app.services.chat_service import ChatChannelKind, ChatService
from app.services.directory_service import OrganizationDirectory
from core.config import config as settings
from core.exceptions.enrollment import AllocationContentionException
from core.logging import get_logger

logger = get_logger(__name__)

INVITE_CODE_PREFIX = "GA-"
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code(length: int = 6) -> str:
    """Random squad invite code, e.g. GA-7K2QXD."""
    return INVITE_CODE_PREFIX + "".join(
        secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length)
    )


def pick_squad_coach(
    squad_number: int,
    assigned_coach_ids: Optional[Sequence[str]],
    coach_in_squads: bool,
    administrator_id: Optional[str] = None,
) -> Optional[str]:
    """
    Coach for the n-th squad of a cohort.

    With an assigned pool the coaches rotate round robin by ordinal. When the
    program puts its coach in squads, the organization administrator leads
    every squad instead.
    """
    if coach_in_squads:
        return administrator_id
    if assigned_coach_ids:
        return assigned_coach_ids[(squad_number - 1) % len(assigned_coach_ids)]
    return None


@dataclass
class SquadAllocation:
    """Where a member was placed."""

    squad_id: str
    squad_number: Optional[int]
    created: bool = False
    already_member: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class _CohortPlan:
    # Plain values copied off the ORM objects; they stay readable after a rollback
    organization_id: str
    program_id: str
    program_name: str
    cohort_id: str
    cohort_name: str
    capacity: int
    assigned_coach_ids: List[str]
    coach_in_squads: bool


class SquadAllocator:
    """
    Places members into the first squad of a cohort with a free seat,
    creating a new squad when all are full.

    Membership writes are compare-and-swap on the squad revision, so losing a
    race just means re-reading the cohort and trying again.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        chat_service: Optional[ChatService] = None,
        directory: Optional[OrganizationDirectory] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db_session = db_session
        self.chat_service = chat_service or ChatService()
        self.directory = directory or OrganizationDirectory(db_session)
        self.max_attempts = max_attempts or settings.SQUAD_ALLOCATION_MAX_ATTEMPTS

    async def allocate(self, program: Program, cohort: Cohort, user_id: str) -> SquadAllocation:
        """
        Place a member into a squad of the cohort.

        Idempotent: a member already in one of the cohort's squads gets that
        squad back and no second membership is written.

        Raises:
            AllocationContentionException: every attempt lost a concurrent write
        """
        plan = _CohortPlan(
            organization_id=program.organization_id,
            program_id=program.id,
            program_name=program.name,
            cohort_id=cohort.id,
            cohort_name=cohort.name,
            capacity=program.squad_capacity or settings.DEFAULT_SQUAD_CAPACITY,
            assigned_coach_ids=list(program.assigned_coach_ids or []),
            coach_in_squads=program.coach_in_squads,
        )
        warnings: List[str] = []
        created = False

        for attempt in range(1, self.max_attempts + 1):
            squads = await Squad.get_for_cohort(self.db_session, plan.cohort_id)

            for squad in squads:
                if squad.has_member(user_id):
                    logger.info(f"User {user_id} already in squad {squad.id}, reusing placement")
                    return SquadAllocation(
                        squad_id=squad.id,
                        squad_number=squad.squad_number,
                        created=created,
                        already_member=not created,
                        warnings=warnings,
                    )

            target = next((squad for squad in squads if squad.has_capacity), None)
            if target is None:
                target = await self._create_squad(plan, self._next_squad_number(squads), warnings)
                if target is None:
                    continue
                created = True

            squad_id = target.id
            squad_number = target.squad_number
            channel_id = target.chat_channel_id
            members = list(target.member_ids or []) + [user_id]

            if await Squad.try_add_member(self.db_session, squad_id, target.revision, members):
                logger.info(
                    f"Placed user {user_id} in squad {squad_id} "
                    f"(#{squad_number}, {len(members)}/{target.capacity})"
                )
                await self._join_chat(channel_id, user_id, warnings)
                return SquadAllocation(
                    squad_id=squad_id,
                    squad_number=squad_number,
                    created=created,
                    warnings=warnings,
                )

            logger.info(
                f"Squad {squad_id} changed under us, retrying "
                f"(attempt {attempt}/{self.max_attempts})"
            )

        logger.error(
            f"Gave up placing user {user_id} in cohort {plan.cohort_id} "
            f"after {self.max_attempts} attempts"
        )
        raise AllocationContentionException(
            data={"cohort_id": plan.cohort_id, "attempts": self.max_attempts}
        )

    async def add_to_community_squad(self, squad_id: str, user_id: str) -> List[str]:
        """
        Add a member to a shared community squad, ignoring its capacity.

        Returns:
            Warnings from best-effort chat provisioning.

        Raises:
            LookupError: the squad does not exist
            AllocationContentionException: every attempt lost a concurrent write
        """
        warnings: List[str] = []
        for _ in range(self.max_attempts):
            squad = await Squad.get_by_id(self.db_session, squad_id)
            if squad is None:
                raise LookupError(f"Community squad {squad_id} not found")
            if squad.has_member(user_id):
                return warnings

            channel_id = squad.chat_channel_id
            members = list(squad.member_ids or []) + [user_id]
            if await Squad.try_add_member(
                self.db_session, squad_id, squad.revision, members, enforce_capacity=False
            ):
                logger.info(f"Added user {user_id} to community squad {squad_id}")
                await self._join_chat(channel_id, user_id, warnings)
                return warnings

        raise AllocationContentionException(
            data={"squad_id": squad_id, "attempts": self.max_attempts}
        )

    @staticmethod
    def _next_squad_number(squads: Sequence[Squad]) -> int:
        numbers = [squad.squad_number for squad in squads if squad.squad_number]
        return max([len(squads), *numbers]) + 1

    async def _create_squad(
        self, plan: _CohortPlan, squad_number: int, warnings: List[str]
    ) -> Optional[Squad]:
        """Create the next squad; None if a concurrent request created it first."""
        administrator_id = None
        if plan.coach_in_squads:
            administrator = await self.directory.get_organization_administrator(
                plan.organization_id
            )
            administrator_id = administrator.id if administrator else None

        coach_id = pick_squad_coach(
            squad_number, plan.assigned_coach_ids, plan.coach_in_squads, administrator_id
        )
        name = f"{plan.program_name} - {plan.cohort_name} - Squad {squad_number}"

        try:
            squad = await Squad.create_squad(
                self.db_session,
                name=name,
                organization_id=plan.organization_id,
                program_id=plan.program_id,
                cohort_id=plan.cohort_id,
                squad_number=squad_number,
                capacity=plan.capacity,
                coach_id=coach_id,
                member_ids=[],
                member_count=0,
                revision=0,
                is_auto_created=True,
                invite_code=generate_invite_code(),
            )
        except IntegrityError:
            await self.db_session.rollback()
            logger.info(f"Squad #{squad_number} of cohort {plan.cohort_id} already created, rescanning")
            return None

        logger.info(f"Created squad {squad.id} '{name}' with coach {coach_id}")

        try:
            channel_id = await self.chat_service.create_channel(
                kind=ChatChannelKind.SQUAD,
                participant_ids=[coach_id] if coach_id else [],
                display_name=name,
                channel_id=f"squad-{squad.id}",
            )
            if channel_id:
                await Squad.set_chat_channel(self.db_session, squad.id, channel_id)
                await self.db_session.refresh(squad)
        except Exception as e:
            logger.warning(f"Failed to create chat channel for squad {squad.id}: {e}")
            await self.db_session.rollback()
            await self.db_session.refresh(squad)
            warnings.append(f"Squad chat channel could not be created: {e}")

        return squad

    async def _join_chat(self, channel_id: Optional[str], user_id: str, warnings: List[str]) -> None:
        if not channel_id:
            return
        try:
            await self.chat_service.add_participants(channel_id, [user_id])
        except Exception as e:
            logger.warning(f"Failed to add user {user_id} to chat channel {channel_id}: {e}")
            warnings.append(f"Could not join squad chat: {e}")
