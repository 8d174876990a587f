from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

if TYPE_CHECKING:
    from app.models.organization import Organization


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class OrganizationMixin:
    """Mixin that scopes a row to a tenant organization."""

    @declared_attr.directive
    def organization_id(cls) -> Mapped[str]:  # type: ignore[override]
        return mapped_column(
            String(36), ForeignKey("organizations.id"), nullable=False, index=True
        )

    @declared_attr.directive
    def organization(cls) -> Mapped["Organization"]:  # type: ignore[override]
        return relationship("Organization", lazy="raise")


__all__ = ["TimestampMixin", "OrganizationMixin"]
