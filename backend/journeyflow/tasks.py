import asyncio
import logging

from journeyflow.celery_config import celery_app
from journeyflow.db.init import init_db
from journeyflow.services.runtime import build_runtime

logger = logging.getLogger(__name__)


@celery_app.task(name="journeyflow.tasks.reconcile_journeys_task", acks_late=True)
def reconcile_journeys_task():
    """
    Celery task running one reconciliation sweep over the Mongo stores.
    Scheduled every minute by celery beat; store writes are revision-checked,
    so a sweep overlapping with event handling in the API is safe.
    """

    async def reconcile():
        await init_db()
        runtime = build_runtime("mongo")
        logger.info("=== RECONCILE_JOURNEYS_TASK STARTED ===")
        report = await runtime.scheduler.tick()
        logger.info(f"=== RECONCILE_JOURNEYS_TASK COMPLETED ({report.users} users) ===")
        return report.model_dump(mode="json")

    try:
        return asyncio.run(reconcile())
    except Exception as e:
        logger.error("=== RECONCILE_JOURNEYS_TASK FAILED ===")
        logger.error(f"Error: {e}", exc_info=True)
        raise
