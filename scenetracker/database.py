from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from scenetracker.config import get_settings
from scenetracker.models import Base

settings = get_settings()

# Create the async engine
# echo=True will log SQL queries, helpful for debugging
engine = create_async_engine(settings.database_url, echo=False)

# Create a session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

async def get_db():
    """Yield a session, closed when the caller is done with it."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db(bind: AsyncEngine = None):
    """Create any missing tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
