"""Workflow Execution Engine - process lifecycle."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from app.config import Settings, get_settings
from core.logging_config import setup_logging
from db.database import close_db, create_db_engine, create_session_factory, init_db
from workflow.engine import WorkflowEngine, build_workflow_engine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None) -> AsyncIterator[WorkflowEngine]:
    """Engine startup and shutdown.

    Startup configures logging, creates the tables and wires the engine on
    the SQL stores. Shutdown cancels pending retries and disposes the
    connection pool.

    Usage:
        async with lifespan() as engine:
            await engine.start(execution_id)
    """
    # Startup
    settings = settings or get_settings()
    setup_logging(settings)

    db_engine = create_db_engine(settings.DATABASE_URL)
    await init_db(db_engine)
    engine = build_workflow_engine(settings, create_session_factory(db_engine))
    logger.info(
        "Workflow execution engine ready",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        max_concurrent=settings.MAX_CONCURRENT_WORKFLOWS,
        retry_delays=settings.retry_delays_list,
    )
    try:
        yield engine
    finally:
        # Shutdown
        cancelled = await engine.shutdown()
        await close_db(db_engine)
        logger.info("Workflow execution engine stopped", cancelled_retries=cancelled)
