import pytest
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rigaby.core.database import Base, create_tables
from rigaby.core.deps import get_db
from rigaby.core.security import create_access_token
from rigaby.main import app
from rigaby.models.wallet import Wallet
from rigaby.services.user_service import UserService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(bind=engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_factory = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_service(db):
    return UserService(db)


@pytest.fixture
def make_user(db, user_service):
    """Create a user with a wallet holding ``balance`` / ``locked``."""
    counter = {"n": 0}

    async def _make_user(balance="0", locked="0", referred_by=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = await user_service.create_user(
            email=fields.pop("email", f"user{n}@example.com"),
            first_name=fields.pop("first_name", f"User{n}"),
            last_name=fields.pop("last_name", "Test"),
            referred_by_id=referred_by,
            **fields,
        )
        if Decimal(balance) or Decimal(locked):
            result = await db.execute(select(Wallet).where(Wallet.user_id == user.id))
            wallet = result.scalars().one()
            wallet.balance = Decimal(balance)
            wallet.locked = Decimal(locked)
            await db.commit()
        return user

    return _make_user


@pytest.fixture
def read_wallet(db):
    """Re-read a wallet from the database, discarding stale session state."""

    async def _read_wallet(user_id):
        result = await db.execute(
            select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
        )
        return result.scalars().one()

    return _read_wallet


@pytest.fixture
async def client(db):
    """HTTP client for the app, bound to the test session."""

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(user_id):
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _auth_headers
