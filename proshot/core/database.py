from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from proshot.core.config import settings

# Import ALL models to ensure they're registered with SQLModel.metadata
from proshot.modules.projects.models import ProjectRecord  # noqa: F401


def build_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, future=True)


def build_session_maker(bind: AsyncEngine):
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine()

# Create async session factory
async_session_maker = build_session_maker(engine)


async def create_db_and_tables(bind: AsyncEngine = engine):
    """Create all tables if they don't exist."""
    async with bind.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, checkfirst=True))
