"""Association treasury API: FastAPI app, lifespan and uvicorn entry point."""

from dotenv import load_dotenv

# .env must be in os.environ before settings are instantiated
load_dotenv()

import logging  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402

from fastapi import Depends, FastAPI  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from treasury.api.routes import balance, expense_requests, loans  # noqa: E402
from treasury.config.settings import settings  # noqa: E402
from treasury.models import Base  # noqa: E402
from treasury.services import async_engine, get_async_session  # noqa: E402
from treasury.services.events import event_bus  # noqa: E402
from treasury.services.logging import setup_server_logging  # noqa: E402
from treasury.services.notification_service import build_notification_service  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing tables only; alembic owns schema changes
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Treasury schema ready on %s", async_engine.url.render_as_string(hide_password=True))
    build_notification_service().register(event_bus)
    try:
        yield
    finally:
        await async_engine.dispose()
        logger.info("Treasury API stopped")


app = FastAPI(
    title=settings.api_title,
    description="Treasury of a voluntary association: expense approvals, balance and loans",
    version=settings.api_version,
    lifespan=lifespan,
)

app.include_router(expense_requests.router)
app.include_router(loans.router)
app.include_router(balance.router)


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_async_session)):
    """Liveness plus a round trip to the database."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check failed: %s", e)
        return {"status": "degraded", "database": "unreachable"}
    return {"status": "ok", "database": "ok"}


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    setup_server_logging(settings.log_file)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()
