import enum
from datetime import date, datetime
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.models.program import Program, ProgramType
from core.db import Base, TimestampMixin, OrganizationMixin


class EnrollmentStatus(str, enum.Enum):
    """Enrollment lifecycle status."""

    UPCOMING = "upcoming"  # Cohort has not started yet
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that hold a seat in a program
OPEN_STATUSES = (EnrollmentStatus.ACTIVE, EnrollmentStatus.UPCOMING)


class Enrollment(Base, TimestampMixin, OrganizationMixin):
    """A member's enrollment in a coaching program."""

    __tablename__ = "enrollments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=False, index=True
    )
    cohort_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("cohorts.id"), nullable=True, index=True
    )
    squad_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("squads.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(EnrollmentStatus, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        default=EnrollmentStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    started_at: Mapped[date] = mapped_column(Date, nullable=False)
    last_assigned_day_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    joined_community: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Pricing snapshot (minor units)
    amount_paid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    discount_code_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("discount_codes.id", ondelete="SET NULL"), nullable=True
    )
    discount_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Replay key for the paid path
    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Enrollment"]:
        """Get enrollment by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_user_id(
        cls, db_session: AsyncSession, user_id: str
    ) -> Sequence["Enrollment"]:
        """Get all enrollments for a user, newest first."""
        result = await db_session.execute(
            select(cls).where(cls.user_id == user_id).order_by(cls.created_at.desc())
        )
        return result.scalars().all()

    @classmethod
    async def get_by_checkout_session(
        cls, db_session: AsyncSession, session_id: str
    ) -> Optional["Enrollment"]:
        result = await db_session.execute(
            select(cls).where(cls.stripe_checkout_session_id == session_id)
        )
        return result.scalars().first()

    @classmethod
    async def get_open_for_program(
        cls, db_session: AsyncSession, user_id: str, program_id: str
    ) -> Optional["Enrollment"]:
        """Active or upcoming enrollment of a user in one program."""
        result = await db_session.execute(
            select(cls).where(
                cls.user_id == user_id,
                cls.program_id == program_id,
                cls.status.in_(OPEN_STATUSES),
            )
        )
        return result.scalars().first()

    @classmethod
    async def get_active_of_type(
        cls, db_session: AsyncSession, user_id: str, program_type: ProgramType
    ) -> Optional["Enrollment"]:
        """Active enrollment of a user in any program of the given type."""
        result = await db_session.execute(
            select(cls)
            .join(Program, Program.id == cls.program_id)
            .where(
                cls.user_id == user_id,
                cls.status == EnrollmentStatus.ACTIVE,
                Program.program_type == program_type,
            )
        )
        return result.scalars().first()

    @classmethod
    async def create_enrollment(cls, db_session: AsyncSession, **kwargs) -> "Enrollment":
        """Create and commit a new enrollment."""
        enrollment = cls(**kwargs)
        db_session.add(enrollment)
        await db_session.commit()
        await db_session.refresh(enrollment)
        return enrollment
