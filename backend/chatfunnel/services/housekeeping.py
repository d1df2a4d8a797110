import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from chatfunnel import config
from chatfunnel.engine.store import SessionStore

logger = logging.getLogger(__name__)


async def abandon_idle_conversations(
    store: SessionStore,
    now: Optional[datetime] = None,
    idle_hours: int = config.ABANDON_AFTER_HOURS,
) -> int:
    """Mark active conversations with no activity for idle_hours as abandoned."""
    now = now or datetime.now(timezone.utc)
    count = await store.mark_idle_abandoned(now - timedelta(hours=idle_hours))
    logger.info(f"[HOUSEKEEPING] Marked {count} idle conversations as abandoned")
    return count


async def purge_expired_tickets(
    store: SessionStore,
    now: Optional[datetime] = None,
    retention_days: int = config.EXPIRED_TICKET_RETENTION_DAYS,
) -> int:
    """Delete unused tickets that expired more than retention_days ago."""
    now = now or datetime.now(timezone.utc)
    count = await store.purge_expired_tickets(now - timedelta(days=retention_days))
    logger.info(f"[HOUSEKEEPING] Purged {count} expired tickets")
    return count
