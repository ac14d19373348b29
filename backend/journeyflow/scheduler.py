import logging

from celery.schedules import crontab

from journeyflow.celery_config import celery_app
from journeyflow.tasks import reconcile_journeys_task

logger = logging.getLogger(__name__)


@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    logger.info("Setting up periodic tasks...")

    sender.add_periodic_task(
        crontab(minute="*"),
        reconcile_journeys_task.s(),
        name="reconcile-journeys",
        # A sweep that waited past the next one is redundant
        expires=60,
    )

    logger.info("Periodic tasks configured successfully")
