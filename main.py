"""FastAPI application entrypoint."""

from fastapi import FastAPI

from src.core.config import settings
from src.core.exceptions import register_exception_handlers
from src.core.logging import configure_logging
from src.modules.appointments.router import router as appointments_router
from src.modules.credits.router import router as credits_router
from src.modules.organizations.router import router as organizations_router
from src.modules.schedule.router import router as schedule_router
from src.modules.users.router import router as users_router


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version="0.1.0",
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(organizations_router)
    app.include_router(users_router)
    app.include_router(schedule_router)
    app.include_router(appointments_router)
    app.include_router(credits_router)

    return app


app = create_app()
