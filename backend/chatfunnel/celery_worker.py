import asyncio
import logging
import time

from celery.signals import worker_process_init

from chatfunnel.celery_config import celery_app
from chatfunnel.db.init import init_db
import chatfunnel.scheduler  # noqa: F401  registers the beat schedule

logger = logging.getLogger(__name__)


@worker_process_init.connect
def on_worker_init(**kwargs):
    """Check MongoDB is reachable before the worker process takes tasks."""
    logger.info("Celery worker process initializing...")
    try:
        asyncio.run(init_db()).close()
        logger.info("Database connection verified for Celery worker.")
    except Exception as e:
        logger.error(f"Database check failed for Celery worker: {e}", exc_info=True)
        time.sleep(5)
        asyncio.run(init_db()).close()
        logger.info("Database connection verified for Celery worker (retry successful).")


# Celery picks up the 'celery' attribute of the module passed to -A
celery = celery_app
