from celery import Celery

from journeyflow import config

celery_app = Celery(
    "journeyflow",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["journeyflow.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # One sweep at a time per worker process; a sweep already fans out per user
    worker_prefetch_multiplier=1,
    # A sweep result is only interesting until the next sweep
    result_expires=3600,
    broker_connection_retry_on_startup=True,
)
