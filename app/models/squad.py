"""Squad model: capacity-bounded member group inside a cohort."""

from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin, OrganizationMixin


class Squad(Base, TimestampMixin, OrganizationMixin):
    """
    A group of members that shares a coach and a chat channel.

    `member_ids` is only ever written through `try_add_member`, which guards the
    write with `revision` so two concurrent placements cannot both take the
    last seat.
    """

    __tablename__ = "squads"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    program_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("programs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    cohort_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("cohorts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    squad_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    member_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    coach_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_auto_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    chat_channel_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    invite_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        UniqueConstraint("cohort_id", "squad_number", name="uq_squads_cohort_number"),
    )

    @property
    def has_capacity(self) -> bool:
        return self.member_count < self.capacity

    def has_member(self, user_id: str) -> bool:
        return user_id in (self.member_ids or [])

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Squad"]:
        """Get squad by ID, always re-reading the row."""
        result = await db_session.execute(
            select(cls)
            .where(cls.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @classmethod
    async def get_for_cohort(
        cls, db_session: AsyncSession, cohort_id: str
    ) -> Sequence["Squad"]:
        """Fresh snapshot of a cohort's squads in ordinal order."""
        result = await db_session.execute(
            select(cls)
            .where(cls.cohort_id == cohort_id)
            .order_by(cls.squad_number, cls.created_at)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    @classmethod
    async def create_squad(cls, db_session: AsyncSession, **kwargs) -> "Squad":
        """Insert a new squad. Raises IntegrityError if the ordinal is taken."""
        squad = cls(**kwargs)
        db_session.add(squad)
        await db_session.commit()
        await db_session.refresh(squad)
        return squad

    @classmethod
    async def try_add_member(
        cls,
        db_session: AsyncSession,
        squad_id: str,
        expected_revision: int,
        member_ids: List[str],
        enforce_capacity: bool = True,
    ) -> bool:
        """
        Compare-and-swap the member list.

        The write only lands if nobody changed the squad since `expected_revision`
        was read (and, unless disabled, the squad still has a free seat).

        Returns:
            True if the row was updated, False if the caller must re-read and retry.
        """
        conditions = [cls.id == squad_id, cls.revision == expected_revision]
        if enforce_capacity:
            conditions.append(cls.member_count < cls.capacity)

        result = await db_session.execute(
            update(cls)
            .where(*conditions)
            .values(
                member_ids=member_ids,
                member_count=len(member_ids),
                revision=cls.revision + 1,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount > 0
        # Commit either way: ends the transaction without expiring loaded instances
        await db_session.commit()
        return updated

    @classmethod
    async def set_chat_channel(
        cls, db_session: AsyncSession, squad_id: str, channel_id: str
    ) -> None:
        await db_session.execute(
            update(cls)
            .where(cls.id == squad_id)
            .values(chat_channel_id=channel_id)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
