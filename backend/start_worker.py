#!/usr/bin/env python3
"""
Dev helper: run a Celery worker with embedded beat so reconciliation sweeps
happen every minute while the API runs with SCHEDULER_MODE=celery.
"""

import logging
import subprocess
import sys

from journeyflow import config
from journeyflow.celery_config import celery_app

logger = logging.getLogger(__name__)


def worker_running() -> bool:
    try:
        return bool(celery_app.control.inspect(timeout=2).ping())
    except Exception as e:
        logger.warning(f"[WORKER] Could not reach the broker at {config.CELERY_BROKER_URL}: {e}")
        return False


def worker_command():
    return [
        "celery",
        "-A", "journeyflow.celery_worker.celery",
        "worker",
        "--beat",
        f"--loglevel={config.LOG_LEVEL.lower()}",
        "--concurrency=1",
    ]


def main():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if config.SCHEDULER_MODE != "celery":
        logger.warning(f"[WORKER] SCHEDULER_MODE is {config.SCHEDULER_MODE}; the API will also sweep in-process")

    if worker_running():
        logger.info("[WORKER] A worker is already answering, nothing to start")
        return

    cmd = worker_command()
    logger.info(f"[WORKER] Running: {' '.join(cmd)}")
    process = subprocess.Popen(cmd)
    try:
        code = process.wait()
    except KeyboardInterrupt:
        logger.info("[WORKER] Stopping worker...")
        process.terminate()
        code = process.wait()
    if code:
        logger.error(f"[WORKER] Worker exited with code {code}")
        sys.exit(code)


if __name__ == "__main__":
    main()
