"""
Member Portal Workflow - Test Fixtures
======================================

Shared pytest fixtures for all tests.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

from collections.abc import AsyncGenerator  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from passlib.hash import bcrypt  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.api.deps import create_access_token, get_notifier  # noqa: E402
from src.api.main import app  # noqa: E402
from src.core.database import Base, get_db  # noqa: E402
from src.core.models import Project, User, UserRole  # noqa: E402
from src.core.workflow import WorkflowNotifier, WorkflowService  # noqa: E402


# ==========================================================================
# Test Database Setup
# ==========================================================================

# In-memory SQLite, one engine per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingNotifier(WorkflowNotifier):
    """Notifier that keeps what it would have sent."""

    def __init__(self):
        super().__init__(enabled=False)
        self.sent = []

    async def send(self, notification) -> bool:
        self.sent.append(notification)
        return True


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Tables are created on a fresh in-memory database and dropped after.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and notifier overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def service(db_session: AsyncSession, notifier: RecordingNotifier) -> WorkflowService:
    return WorkflowService(db_session, notifier=notifier)


# ==========================================================================
# User Fixtures
# ==========================================================================

async def _make_user(
    db: AsyncSession,
    email: str,
    name: str,
    role: UserRole = UserRole.MEMBER,
    is_active: bool = True,
    password: str = "TestPass123!",
) -> User:
    user = User(
        id=uuid4(),
        email=email,
        password_hash=bcrypt.hash(password),
        name=name,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """
    Create a test member.

    Password: TestPass123!
    """
    return await _make_user(db_session, "member@example.com", "Test Member")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "coordinator@example.com", "Project Coordinator")


@pytest_asyncio.fixture
async def test_admin(db_session: AsyncSession) -> User:
    """
    Create a test admin.

    Password: AdminPass123!
    """
    return await _make_user(
        db_session, "admin@example.com", "Admin User",
        role=UserRole.ADMIN, password="AdminPass123!",
    )


@pytest_asyncio.fixture
async def inactive_user(db_session: AsyncSession) -> User:
    return await _make_user(
        db_session, "inactive@example.com", "Inactive User", is_active=False,
    )


# ==========================================================================
# Project Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def project(db_session: AsyncSession, test_user: User) -> Project:
    """A project without a workflow."""
    project = Project(
        id=uuid4(),
        created_by=test_user.id,
        title="Community Center Renovation",
        client_name="Oakland Housing Trust",
        description="Bid package for the east wing renovation",
    )
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


# ==========================================================================
# Auth Fixtures
# ==========================================================================

@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Get authorization headers for test user."""
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(test_admin: User) -> dict[str, str]:
    """Get authorization headers for admin user."""
    token = create_access_token(test_admin.id)
    return {"Authorization": f"Bearer {token}"}

