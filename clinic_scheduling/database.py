import os
from dotenv import load_dotenv

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./clinic_scheduling.db")


def to_async_url(url: str) -> str:
    """Point plain driver URLs at their asyncio drivers."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


engine = create_async_engine(to_async_url(DATABASE_URL))

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()

_scheduling_schema_checked = False

SCHEDULING_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_slot_instances_provider_start ON slot_instances(provider_id, start_time)',
    'CREATE INDEX IF NOT EXISTS idx_bookings_patient_status ON bookings(patient_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_bookings_provider_status ON bookings(provider_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_availability_templates_provider_day '
    'ON availability_templates(provider_id, day_of_week, is_active)',
]


async def ensure_scheduling_schema(bind: AsyncEngine | None = None) -> None:
    """Create missing tables and indexes. Safe to run on every startup."""
    global _scheduling_schema_checked

    if bind is None and _scheduling_schema_checked:
        return

    async with (bind or engine).begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        for statement in SCHEDULING_INDEXES:
            await connection.execute(text(statement))

    if bind is None:
        _scheduling_schema_checked = True


async def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        await db.close()
