import asyncio
import logging
import sys
import time

from celery.signals import worker_process_init

from journeyflow.celery_config import celery_app
from journeyflow.db.init import init_db
# Registers the beat schedule on the app
from journeyflow import scheduler  # noqa: F401

logger = logging.getLogger(__name__)


@worker_process_init.connect
def on_worker_init(**kwargs):
    """
    Check the database connection when a Celery worker process starts so a
    misconfigured worker fails fast instead of on its first sweep.
    """
    logger.info("Celery worker process initializing...")
    try:
        asyncio.run(init_db())
        logger.info("Database connection initialized for Celery worker.")
    except Exception as e:
        logger.error(f"Failed to initialize database for Celery worker: {e}", exc_info=True)
        time.sleep(5)
        try:
            asyncio.run(init_db())
            logger.info("Database connection initialized for Celery worker (retry successful).")
        except Exception as retry_error:
            logger.error(f"Failed to initialize database for Celery worker (retry failed): {retry_error}", exc_info=True)
            sys.exit(1)


celery = celery_app
