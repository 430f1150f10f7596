import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from src.core.database import Base  # noqa: E402
from src.modules.appointments import models as _appointment_models  # noqa: E402,F401
from src.modules.credits import models as _credit_models  # noqa: E402,F401
from src.modules.organizations import models as _organization_models  # noqa: E402,F401
from src.modules.schedule import models as _schedule_models  # noqa: E402,F401
from src.modules.users import models as _user_models  # noqa: E402,F401

from helpers import BASE_NOW, FrozenClock, build_clinic  # noqa: E402


@pytest_asyncio.fixture
async def db_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with SessionLocal() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(BASE_NOW)


@pytest_asyncio.fixture
async def clinic(db_session, clock):
    return await build_clinic(db_session, "acme", clock)


@pytest_asyncio.fixture
async def other_clinic(db_session, clock):
    return await build_clinic(db_session, "globex", clock)
