"""Provisioning of 1:1 coaching for individual programs."""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.coaching import (
    DEFAULT_COACHING_PLAN,
    CoachingRelationship,
    default_next_call,
)
from app.models.user import User
from app.services.chat_service import ChatChannelKind, ChatService
from app.services.directory_service import OrganizationDirectory
from core.config import config as settings
from core.logging import get_logger

logger = get_logger(__name__)

COACHING_STATUS_ACTIVE = "active"


@dataclass
class CoachingProvisioning:
    """Outcome of provisioning; nothing is created when no coach is available."""

    relationship_id: Optional[str] = None
    coach_id: Optional[str] = None
    created: bool = False
    chat_channel_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class CoachingProvisioner:
    """Pairs an individual-program client with the organization's coach."""

    def __init__(
        self,
        db_session: AsyncSession,
        chat_service: Optional[ChatService] = None,
        directory: Optional[OrganizationDirectory] = None,
    ):
        self.db_session = db_session
        self.chat_service = chat_service or ChatService()
        self.directory = directory or OrganizationDirectory(db_session)

    async def provision(
        self,
        organization_id: str,
        program_id: str,
        user_id: str,
        today: Optional[date] = None,
    ) -> CoachingProvisioning:
        """
        Create or refresh the client's coaching relationship.

        The organization administrator is the coach. The relationship is
        upserted (one per client per organization), a 1:1 chat channel is
        opened best-effort and the client's profile is pointed at the coach.
        """
        today = today or date.today()
        outcome = CoachingProvisioning()

        coach = await self.directory.get_organization_administrator(organization_id)
        if coach is None:
            message = "No coach available for this organization; coaching was not set up"
            logger.warning(f"{message} (organization {organization_id}, user {user_id})")
            outcome.warnings.append(message)
            return outcome
        coach_id = coach.id
        coach_name = coach.full_name

        client = await User.get_by_id(self.db_session, user_id)
        if client is None:
            message = "Client profile not found; coaching was not set up"
            logger.warning(f"{message} (user {user_id})")
            outcome.warnings.append(message)
            return outcome
        client_name = client.full_name or client.email

        relationship = None
        for attempt in range(2):
            relationship = await CoachingRelationship.get_for_client(
                self.db_session, organization_id, user_id
            )
            outcome.created = relationship is None
            if relationship is None:
                relationship = CoachingRelationship(
                    organization_id=organization_id,
                    user_id=user_id,
                    coaching_plan=DEFAULT_COACHING_PLAN,
                    start_date=today,
                    focus_areas=[],
                    action_items=[],
                    session_history=[],
                    resources=[],
                    private_notes=[],
                    next_call=default_next_call(settings.DEFAULT_COACHING_TIMEZONE),
                )
                self.db_session.add(relationship)

            relationship.coach_id = coach_id
            relationship.program_id = program_id
            relationship.client_name = client_name
            relationship.client_email = client.email
            relationship.client_image_url = client.image_url

            client.coach_id = coach_id
            client.is_coaching_client = True
            client.coaching_status = COACHING_STATUS_ACTIVE

            try:
                await self.db_session.commit()
                break
            except IntegrityError:
                # A concurrent request created the relationship first; update it instead
                await self.db_session.rollback()
                if attempt:
                    raise
                client = await User.get_by_id(self.db_session, user_id)

        outcome.relationship_id = relationship.id
        outcome.coach_id = coach_id
        outcome.chat_channel_id = relationship.chat_channel_id
        logger.info(
            f"{'Created' if outcome.created else 'Updated'} coaching relationship "
            f"{relationship.id}: client {user_id} -> coach {coach_id}"
        )

        if not outcome.chat_channel_id:
            await self._open_chat(relationship, client_name, coach_name, outcome)

        return outcome

    async def _open_chat(
        self,
        relationship: CoachingRelationship,
        client_name: str,
        coach_name: str,
        outcome: CoachingProvisioning,
    ) -> None:
        relationship_id = relationship.id
        try:
            channel_id = await self.chat_service.create_channel(
                kind=ChatChannelKind.COACHING,
                participant_ids=[relationship.user_id, relationship.coach_id],
                display_name=f"{client_name} & {coach_name}",
                channel_id=f"coaching-{relationship_id}",
            )
            if channel_id:
                relationship.chat_channel_id = channel_id
                await self.db_session.commit()
                outcome.chat_channel_id = channel_id
        except Exception as e:
            logger.warning(f"Failed to open coaching chat for relationship {relationship_id}: {e}")
            await self.db_session.rollback()
            outcome.warnings.append(f"Coaching chat channel could not be created: {e}")
