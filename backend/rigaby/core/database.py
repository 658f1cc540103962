import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from ..core.config import settings

logger = logging.getLogger(__name__)

# Create SQLAlchemy async engine
engine = create_async_engine(
    str(settings.SQLALCHEMY_DATABASE_URI),
    echo=False,
    future=True,
)

# Create async session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create a session for use in the main.py file
SessionLocal = AsyncSessionLocal

# Create a declarative base for models
Base = declarative_base()


async def create_tables(bind=None):
    """Create all tables known to ``Base`` that do not exist yet."""
    # Register every model on Base.metadata before create_all
    from ..models import referral, user, wallet  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database tables ensured: {sorted(Base.metadata.tables.keys())}")
