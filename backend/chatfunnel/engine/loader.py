import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from chatfunnel.engine.blocks import Script
from chatfunnel.engine.errors import CaptureInvalidError, ScriptUnavailableError
from chatfunnel.engine.records import Funnel, LeadTicket, Notice
from chatfunnel.engine.store import SessionStore

logger = logging.getLogger(__name__)

FUNNEL_UNAVAILABLE_MESSAGE = "Funil não encontrado ou inativo"
TICKET_NOT_FOUND_MESSAGE = "Ticket inválido ou expirado"
TICKET_EXPIRED_MESSAGE = "Este ticket expirou. Por favor, preencha o formulário novamente."
TICKET_USED_MESSAGE = "Este ticket já foi utilizado."


@dataclass
class LoadedRun:
    """Everything a run needs before it may start."""

    funnel: Funnel
    script: Script
    ticket: Optional[LeadTicket] = None
    notices: List[Notice] = field(default_factory=list)


def check_ticket(ticket: Optional[LeadTicket], now: datetime) -> LeadTicket:
    """Return the ticket if it can still seed a session, else raise CaptureInvalidError."""
    if ticket is None:
        raise CaptureInvalidError(TICKET_NOT_FOUND_MESSAGE)
    if ticket.is_expired(now):
        raise CaptureInvalidError(TICKET_EXPIRED_MESSAGE)
    if ticket.used_at:
        raise CaptureInvalidError(TICKET_USED_MESSAGE)
    return ticket


async def load_run(
    store: SessionStore,
    slug: str,
    ticket_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LoadedRun:
    """
    Load the funnel script and, when a ticket code is given, the capture record.

    A missing or inactive funnel raises ScriptUnavailableError. An unusable
    ticket never blocks the run: the refusal becomes a warning notice and the
    run starts without lead data.
    """
    now = now or datetime.now(timezone.utc)
    logger.info(f"[RUN_LOAD] Loading funnel '{slug}' (ticket: {ticket_code or 'none'})")

    try:
        funnel = await store.get_funnel_by_slug(slug)
    except Exception as e:
        logger.error(f"[RUN_LOAD] Failed to load funnel '{slug}': {e}", exc_info=True)
        raise ScriptUnavailableError(FUNNEL_UNAVAILABLE_MESSAGE) from e

    if not funnel or not funnel.is_active:
        logger.warning(f"[RUN_LOAD] Funnel '{slug}' not found or inactive")
        raise ScriptUnavailableError(FUNNEL_UNAVAILABLE_MESSAGE)

    try:
        blocks = await store.list_blocks(funnel.id)
    except Exception as e:
        logger.error(f"[RUN_LOAD] Failed to load blocks for funnel {funnel.id}: {e}", exc_info=True)
        raise ScriptUnavailableError(FUNNEL_UNAVAILABLE_MESSAGE) from e

    run = LoadedRun(funnel=funnel, script=Script(blocks))
    logger.info(f"[RUN_LOAD] Funnel {funnel.id} loaded with {len(run.script)} blocks")

    if not ticket_code:
        return run

    try:
        ticket = await store.get_ticket(ticket_code, funnel.id)
    except Exception as e:
        logger.error(f"[RUN_LOAD] Failed to load ticket {ticket_code}: {e}", exc_info=True)
        return run

    try:
        run.ticket = check_ticket(ticket, now)
        logger.info(f"[RUN_LOAD] Ticket {ticket_code} accepted")
    except CaptureInvalidError as e:
        logger.warning(f"[RUN_LOAD] Ticket {ticket_code} refused: {e}")
        run.notices.append(Notice(level="warning", message=str(e)))

    return run
