import os
from datetime import date, timedelta
from typing import AsyncGenerator, List, Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Ensure critical settings exist before the app/config modules import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./dev.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-change-me-please")
os.environ.setdefault("CHAT_SERVICE_URL", "")

from api.deps import get_chat_service
from app.models.organization import Organization
from app.models.program import Cohort, Program, ProgramType
from app.models.user import Role, User
from app.utils.security import create_access_token
from core.db import get_db
from core.db.base import Base
from core.db.session import enable_sqlite_foreign_keys
from main import app

# Use SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
    connect_args={"check_same_thread": False, "timeout": 30},
)
enable_sqlite_foreign_keys(engine)
TestSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class FakeChatService:
    """In-memory stand-in for the chat backend."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.channels = {}

    @property
    def enabled(self) -> bool:
        return True

    async def create_channel(
        self,
        kind: str,
        participant_ids: List[str],
        display_name: str,
        channel_id: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Optional[str]:
        if self.fail:
            raise RuntimeError("chat service unavailable")
        self.channels[channel_id] = {
            "kind": kind,
            "name": display_name,
            "members": list(participant_ids),
        }
        return channel_id

    async def add_participants(self, channel_id: str, participant_ids: List[str]) -> None:
        if self.fail:
            raise RuntimeError("chat service unavailable")
        self.channels[channel_id]["members"].extend(participant_ids)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create and drop all tables for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for testing."""
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Session factory for tests that need several independent sessions."""
    return TestSessionLocal


@pytest.fixture
def chat_service() -> FakeChatService:
    return FakeChatService()


@pytest.fixture
async def client(chat_service: FakeChatService) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing."""

    async def override_get_db():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chat_service] = lambda: chat_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def organization(db_session: AsyncSession) -> Organization:
    """Create a test organization with Stripe Connect configured."""
    org = Organization(
        name="Test Coaching",
        slug="test-coaching",
        is_active=True,
        stripe_connect_account_id="acct_test_123",
    )
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest.fixture
async def create_test_user(db_session: AsyncSession, organization: Organization):
    """Factory fixture to create users in the test organization."""

    async def _create_user(
        email: str, name: str = "Test User", role: Role = Role.CLIENT, **kwargs
    ) -> User:
        user = User(
            organization_id=organization.id,
            email=email,
            first_name=name.split()[0],
            last_name=name.split()[-1] if len(name.split()) > 1 else "User",
            role=role,
            is_active=True,
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
async def test_user(create_test_user) -> User:
    """Create a test client user."""
    return await create_test_user("client@example.com", "Test Client")


@pytest.fixture
async def admin_user(create_test_user) -> User:
    """Create an admin user; also the organization's coach for 1:1 programs."""
    return await create_test_user("admin@example.com", "Admin User", role=Role.ADMIN)


@pytest.fixture
async def coaches(create_test_user) -> List[User]:
    """Three coaches for squad round robin."""
    return [
        await create_test_user(f"coach{letter}@example.com", f"Coach {letter}", role=Role.COACH)
        for letter in ("A", "B", "C")
    ]


def make_headers(user: User) -> dict:
    access_token = create_access_token(user.id, user.role.value, user.organization_id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def headers_for():
    """Build authentication headers for any user."""
    return make_headers


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Create authentication headers for test user."""
    return make_headers(test_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    """Create authentication headers for admin user."""
    return make_headers(admin_user)


@pytest.fixture
async def create_program(db_session: AsyncSession, organization: Organization):
    """Factory fixture for programs."""

    async def _create_program(
        name: str = "Test Program",
        program_type: ProgramType = ProgramType.GROUP,
        price_cents: int = 0,
        **kwargs,
    ) -> Program:
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("is_published", True)
        program = Program(
            organization_id=organization.id,
            name=name,
            program_type=program_type,
            price_cents=price_cents,
            length_days=30,
            **kwargs,
        )
        db_session.add(program)
        await db_session.commit()
        await db_session.refresh(program)
        return program

    return _create_program


@pytest.fixture
async def create_cohort(db_session: AsyncSession):
    """Factory fixture for cohorts."""

    async def _create_cohort(
        program: Program,
        name: str = "Spring Cohort",
        start_date: Optional[date] = None,
        **kwargs,
    ) -> Cohort:
        cohort = Cohort(
            program_id=program.id,
            name=name,
            start_date=start_date or date.today() + timedelta(days=5),
            enrollment_open=kwargs.pop("enrollment_open", True),
            **kwargs,
        )
        db_session.add(cohort)
        await db_session.commit()
        await db_session.refresh(cohort)
        return cohort

    return _create_cohort


@pytest.fixture
async def group_program(create_program, coaches) -> Program:
    """Free group program with three assigned coaches."""
    return await create_program(
        name="Group Program",
        program_type=ProgramType.GROUP,
        assigned_coach_ids=[coach.id for coach in coaches],
    )


@pytest.fixture
async def cohort(create_cohort, group_program: Program) -> Cohort:
    return await create_cohort(group_program)


@pytest.fixture
async def individual_program(create_program) -> Program:
    """Free individual (1:1 coaching) program."""
    return await create_program(name="1:1 Coaching", program_type=ProgramType.INDIVIDUAL)


@pytest.fixture
def mock_stripe_service():
    """Mock Stripe service methods for testing."""
    with patch("app.services.enrollment_service.StripeService") as mock_stripe:
        # Create a mock instance
        mock_instance = AsyncMock()

        mock_instance.create_customer = AsyncMock(return_value="cus_test_123")
        mock_instance.create_checkout_session = AsyncMock(
            return_value={
                "id": "cs_test_123",
                "url": "https://checkout.stripe.com/c/pay/cs_test_123",
            }
        )
        mock_instance.retrieve_checkout_session = AsyncMock()

        # Make the class constructor return our mock instance
        mock_stripe.return_value = mock_instance

        yield mock_instance
