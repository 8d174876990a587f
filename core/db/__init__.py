from core.db.base import Base
from core.db.mixins import TimestampMixin, OrganizationMixin
from core.db.session import async_session_factory, engine, get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "OrganizationMixin",
    "async_session_factory",
    "engine",
    "get_db",
]
