import asyncio
import logging

from chatfunnel.celery_config import celery_app
from chatfunnel.db.init import init_db
from chatfunnel.services import housekeeping
from chatfunnel.services.beanie_store import BeanieSessionStore

logger = logging.getLogger(__name__)


async def _run_with_db(job):
    client = await init_db()
    try:
        return await job(BeanieSessionStore())
    finally:
        client.close()


@celery_app.task(name="chatfunnel.tasks.abandon_idle_conversations_task", acks_late=True, max_retries=3)
def abandon_idle_conversations_task():
    """Periodic sweep closing conversations the lead walked away from."""
    logger.info("=== ABANDON_IDLE_CONVERSATIONS_TASK STARTED ===")
    try:
        count = asyncio.run(_run_with_db(housekeeping.abandon_idle_conversations))
        logger.info(f"=== ABANDON_IDLE_CONVERSATIONS_TASK COMPLETED ({count} abandoned) ===")
        return count
    except Exception as e:
        logger.error(f"=== ABANDON_IDLE_CONVERSATIONS_TASK FAILED === {e}", exc_info=True)
        raise


@celery_app.task(name="chatfunnel.tasks.purge_expired_tickets_task", acks_late=True, max_retries=3)
def purge_expired_tickets_task():
    logger.info("=== PURGE_EXPIRED_TICKETS_TASK STARTED ===")
    try:
        count = asyncio.run(_run_with_db(housekeeping.purge_expired_tickets))
        logger.info(f"=== PURGE_EXPIRED_TICKETS_TASK COMPLETED ({count} purged) ===")
        return count
    except Exception as e:
        logger.error(f"=== PURGE_EXPIRED_TICKETS_TASK FAILED === {e}", exc_info=True)
        raise
