import logging
from celery.schedules import crontab
from chatfunnel.celery_config import celery_app
from chatfunnel.tasks import abandon_idle_conversations_task, purge_expired_tickets_task

logger = logging.getLogger(__name__)


@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    logger.info("Setting up periodic tasks...")

    sender.add_periodic_task(
        crontab(minute="*/15"),
        abandon_idle_conversations_task.s(),
        name="abandon-idle-conversations"
    )

    # Daily at 3 AM
    sender.add_periodic_task(
        crontab(hour=3, minute=0),
        purge_expired_tickets_task.s(),
        name="purge-expired-tickets"
    )

    logger.info("Periodic tasks configured successfully")
