import asyncio
import os
from datetime import date, time

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite:///./test.db')

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from clinic_scheduling.database import ensure_scheduling_schema  # noqa: E402
from clinic_scheduling.models import availability, blackout, booking, slot, user  # noqa: E402,F401


@pytest.fixture
def run_db(tmp_path):
    """Run ``scenario(sessions)`` against a fresh SQLite file database.

    ``sessions`` is an async session factory; open one session per concurrent
    request, as the web layer does.
    """
    database_url = f'sqlite+aiosqlite:///{tmp_path / "scheduling.db"}'

    def runner(scenario):
        async def main():
            engine = create_async_engine(database_url)
            await ensure_scheduling_schema(engine)
            sessions = async_sessionmaker(engine, autoflush=False, expire_on_commit=False)
            try:
                return await scenario(sessions)
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return runner


@pytest.fixture
def monday_template_fields():
    return {
        'provider_id': 10,
        'day_of_week': 1,
        'start_time': time(9, 0),
        'end_time': time(12, 0),
        'slot_duration_minutes': 30,
        'max_bookings_per_slot': 1,
        'effective_from': date(2030, 1, 1),
    }
