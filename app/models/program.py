import enum
from datetime import date
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin, OrganizationMixin


class ProgramType(str, enum.Enum):
    """Delivery model of a coaching program."""

    GROUP = "group"  # Delivered to capacity-bounded squads within a cohort
    INDIVIDUAL = "individual"  # Delivered 1:1 by a coach


class Program(Base, TimestampMixin, OrganizationMixin):
    """Coaching program offered by an organization."""

    __tablename__ = "programs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    program_type: Mapped[ProgramType] = mapped_column(
        Enum(ProgramType, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    length_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    cover_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Pricing (minor units, e.g. cents)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)

    # Squad settings (group programs)
    squad_capacity: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    assigned_coach_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    coach_in_squads: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Individual programs may put clients into a shared community squad
    client_community_squad_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def is_group(self) -> bool:
        return self.program_type == ProgramType.GROUP

    @property
    def is_available(self) -> bool:
        """Open for self-service enrollment."""
        return self.is_active and self.is_published

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Program"]:
        """Get program by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()


class Cohort(Base, TimestampMixin):
    """Time-boxed run of a group program."""

    __tablename__ = "cohorts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    enrollment_open: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_enrollment: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # null = unlimited
    current_enrollment: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def has_capacity(self) -> bool:
        """Check if the cohort has room left in aggregate."""
        if self.max_enrollment is None:
            return True
        return self.current_enrollment < self.max_enrollment

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Cohort"]:
        """Get cohort by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_for_program(
        cls, db_session: AsyncSession, id: str, program_id: str
    ) -> Optional["Cohort"]:
        """Get a cohort only if it belongs to the given program."""
        result = await db_session.execute(
            select(cls).where(cls.id == id, cls.program_id == program_id)
        )
        return result.scalars().first()

    @classmethod
    async def increment_enrollment(cls, db_session: AsyncSession, id: str) -> None:
        """Atomically bump the enrollment counter (no read-modify-write)."""
        await db_session.execute(
            update(cls)
            .where(cls.id == id)
            .values(current_enrollment=cls.current_enrollment + 1)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
