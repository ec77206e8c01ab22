# tests/conftest.py: Shared test fixtures
import os

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_dummy"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_pro_test"
os.environ["STRIPE_ENTERPRISE_PRICE_ID"] = "price_enterprise_test"
os.environ["STORAGE_ACCOUNTING"] = "actual"
os.environ.pop("SENDGRID_API_KEY", None)

from core.security import create_token_for_user, hash_password  # noqa: E402
from main import app  # noqa: E402
from models.models import (  # noqa: E402
    Project, ProjectMember, ProjectRole, Subscription, SubscriptionPlan,
    SubscriptionStatus, User,
)
from services.billing_service import BillingGateway  # noqa: E402
from services.store import SQLStore  # noqa: E402

TEST_PASSWORD = "Passw0rd!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def store(session_factory):
    return SQLStore(session_factory)


@pytest_asyncio.fixture(scope="function")
async def client(store):
    """HTTP test client wired to the per-test store"""
    app.state.store = store
    app.state.gateway = BillingGateway(os.environ["STRIPE_SECRET_KEY"], os.environ["STRIPE_WEBHOOK_SECRET"])
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Data helpers ─────────────────────────────────────────────

async def create_user(store: SQLStore, email: str, name: str = "Test User") -> User:
    return await store.create_user(User(email=email, name=name, password_hash=hash_password(TEST_PASSWORD)))


async def create_project(store: SQLStore, creator: User, name: str = "Test Project") -> Project:
    return await store.create_project(Project(name=name, creator_id=creator.id))


async def add_member(session_factory, project_id: str, user_id: str, role: ProjectRole = ProjectRole.MEMBER) -> None:
    async with session_factory() as session:
        async with session.begin():
            session.add(ProjectMember(project_id=project_id, user_id=user_id, role=role))


async def set_plan(store: SQLStore, user: User, plan: SubscriptionPlan) -> Subscription:
    subscription = await store.get_subscription(user.id) or Subscription(user_id=user.id)
    subscription.plan = plan
    subscription.status = SubscriptionStatus.ACTIVE
    return await store.save_subscription(subscription)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    return {"Authorization": f"Bearer {create_token_for_user(user)}"}


# ── Users ────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def owner(store):
    return await create_user(store, "owner@nudgeapp.io", "Olivia Owner")


@pytest_asyncio.fixture
async def editor(store):
    return await create_user(store, "editor@nudgeapp.io", "Eddie Editor")


@pytest_asyncio.fixture
async def member(store):
    return await create_user(store, "member@nudgeapp.io", "Mia Member")


@pytest_asyncio.fixture
async def outsider(store):
    return await create_user(store, "outsider@nudgeapp.io", "Oscar Outsider")


@pytest_asyncio.fixture
async def project(store, session_factory, owner, editor, member):
    """Project owned by ``owner`` with ``editor`` as EDITOR and ``member`` as MEMBER"""
    created = await create_project(store, owner)
    await add_member(session_factory, created.id, editor.id, ProjectRole.EDITOR)
    await add_member(session_factory, created.id, member.id, ProjectRole.MEMBER)
    return created
