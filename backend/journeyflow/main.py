import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from journeyflow import config
from journeyflow.api.events import router as events_router
from journeyflow.api.journeys import router as journeys_router
from journeyflow.api.users import router as users_router
from journeyflow.db.init import init_db
from journeyflow.services.runtime import JourneyRuntime, build_runtime

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(runtime: Optional[JourneyRuntime] = None, run_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the API. Without a runtime one is created for the configured store
    backend at startup; tests pass their own.
    """
    if run_scheduler is None:
        run_scheduler = config.SCHEDULER_MODE == "inprocess"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== APPLICATION STARTUP ===")
        current = runtime
        if current is None:
            if config.STORE_BACKEND == "mongo":
                logger.info("Initializing database...")
                try:
                    await init_db()
                    logger.info("Database initialized successfully")
                except Exception as e:
                    logger.error(f"Database initialization failed: {e}", exc_info=True)
                    raise
            current = build_runtime()
        app.state.runtime = current
        await current.start(run_scheduler=run_scheduler)
        if not run_scheduler:
            logger.info(f"In-process reconciliation disabled (SCHEDULER_MODE={config.SCHEDULER_MODE})")
        logger.info("API endpoints available:")
        logger.info("  - /journeys: Journey registration")
        logger.info("  - /events/{journeyName}/{userId}: Event ingestion")
        logger.info("  - /users, /crm-users: State inspection")
        logger.info("=== APPLICATION STARTUP COMPLETE ===")

        yield

        logger.info("=== APPLICATION SHUTDOWN ===")
        await current.stop()
        logger.info("=== APPLICATION SHUTDOWN COMPLETE ===")

    app = FastAPI(title="Journeyflow", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "Journeyflow API"}

    @app.get("/health")
    async def health_check(request: Request):
        """Health check with engine and scheduler statistics"""
        current: JourneyRuntime = request.app.state.runtime
        db_status = "not_used"
        if current.backend == "mongo":
            try:
                from journeyflow.db.init import get_database
                await get_database().command("ping")
                db_status = "healthy"
            except Exception as e:
                db_status = f"unhealthy: {str(e)}"

        report = current.scheduler.last_report
        return {
            "status": "degraded" if db_status.startswith("unhealthy") else "healthy",
            "database": db_status,
            "scheduler": "running" if current.scheduler.running else "stopped",
            "statistics": dict(current.engine.stats),
            "last_sweep": report.model_dump(mode="json") if report else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(journeys_router, tags=["journeys"])
    app.include_router(events_router, tags=["events"])
    app.include_router(users_router, tags=["users"])
    return app


app = create_app()
