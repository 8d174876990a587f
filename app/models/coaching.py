"""One-to-one coaching relationship between a client and a coach."""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Date, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin, OrganizationMixin

DEFAULT_COACHING_PLAN = "monthly"
DEFAULT_CALL_LOCATION = "Chat"


def default_next_call(timezone_name: str) -> Dict[str, Any]:
    """Unscheduled next call placeholder."""
    return {"datetime": None, "timezone": timezone_name, "location": DEFAULT_CALL_LOCATION}


class CoachingRelationship(Base, TimestampMixin, OrganizationMixin):
    """Coaching record; at most one per client per organization."""

    __tablename__ = "coaching_relationships"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    coach_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    program_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    coaching_plan: Mapped[str] = mapped_column(
        String(50), default=DEFAULT_COACHING_PLAN, nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    focus_areas: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    action_items: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    session_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    resources: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    private_notes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    next_call: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    chat_channel_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Cached client details for coach dashboards
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_coaching_organization_user"),
    )

    @classmethod
    async def get_for_client(
        cls, db_session: AsyncSession, organization_id: str, user_id: str
    ) -> Optional["CoachingRelationship"]:
        result = await db_session.execute(
            select(cls).where(
                cls.organization_id == organization_id,
                cls.user_id == user_id,
            )
        )
        return result.scalars().first()
