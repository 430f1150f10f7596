import asyncio
import os

from dotenv import load_dotenv
import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.core.database import resolve_async_database_url
from src.core.tenancy import count_by_organization, without_tenant
from src.modules.appointments.models import Appointment
from src.modules.credits.models import CreditTransaction
from src.modules.users.models import User

load_dotenv()

DB_LABELS = {
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite (test)",
}

HEALTH_QUERIES = {
    "postgresql": "SELECT version();",
    "mysql": "SELECT VERSION();",
}

TENANT_TABLES = (("users", User), ("appointments", Appointment), ("credit transactions", CreditTransaction))


async def verify_database():
    print("-" * 30)
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("ERROR: DATABASE_URL is not set")
        return False

    try:
        async_url = resolve_async_database_url(db_url)
        url = make_url(async_url)
    except ValueError as exc:
        print(f"ERROR: unsupported database configuration: {exc}")
        return False

    backend = url.get_backend_name()
    label = DB_LABELS.get(backend, backend)
    print(f"Checking {label} connection...")
    print(f"DSN: {url.render_as_string(hide_password=True)}")

    query = HEALTH_QUERIES.get(backend, "SELECT 1")

    engine = create_async_engine(async_url, echo=False)
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text(query))
            print(f"OK: {label} answered {result.scalar()}")
        async with AsyncSession(engine) as session:
            with without_tenant("environment check row counts") as access:
                for label_name, model in TENANT_TABLES:
                    counts = await count_by_organization(session, model, access)
                    print(f"{label_name} per organization: {counts or 'none'}")
        return True
    except (SQLAlchemyError, OSError) as exc:
        print(f"ERROR: {label} check failed: {exc}")
        return False
    finally:
        await engine.dispose()


async def verify_redis():
    print("-" * 30)
    print("Checking Redis connection...")
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        print("WARNING: REDIS_URL is not set; jobs stay in memory")
        return True

    print(f"REDIS_URL: {redis_url.split('@')[-1]}")

    try:
        r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        if await r.ping():
            print("OK: Redis answered PING")
        await r.aclose()
        return True
    except (redis.RedisError, OSError) as exc:
        print(f"ERROR: Redis check failed: {exc}")
        return False


async def main():
    print("Verifying environment...")

    db_ok = await verify_database()
    redis_ok = await verify_redis()

    print("-" * 30)
    if db_ok and redis_ok:
        print("All core services are reachable.")
    else:
        print("Some services could not be reached; check .env and running containers.")


if __name__ == "__main__":
    asyncio.run(main())
