import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel

from chatfunnel import config
from chatfunnel.engine.errors import ScriptUnavailableError
from chatfunnel.engine.records import LeadTicket
from chatfunnel.engine.store import SessionStore

logger = logging.getLogger(__name__)

TICKET_PREFIX = "TKT-"
TICKET_CODE_LENGTH = 8
TICKET_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 3


class IssuedTicket(BaseModel):
    ticket_code: str
    chat_url: str
    expires_at: datetime


def generate_ticket_code() -> str:
    return TICKET_PREFIX + "".join(secrets.choice(TICKET_ALPHABET) for _ in range(TICKET_CODE_LENGTH))


def chat_url(base_url: str, funnel_slug: str, ticket_code: str) -> str:
    return f"{base_url.rstrip('/')}/chat/{funnel_slug}?ticket={ticket_code}"


async def create_ticket(
    store: SessionStore,
    funnel_slug: str,
    lead_data: Dict[str, Any],
    expiration_hours: int = config.TICKET_EXPIRATION_HOURS,
    chat_base_url: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedTicket:
    """
    Issue a single-use capture record that seeds a chat with form data.

    Raises ScriptUnavailableError when no funnel has the slug.
    """
    funnel = await store.get_funnel_by_slug(funnel_slug)
    if not funnel:
        raise ScriptUnavailableError(f"Funil não encontrado: {funnel_slug}")

    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=expiration_hours)

    for attempt in range(MAX_CODE_ATTEMPTS):
        ticket = LeadTicket(
            ticket_code=generate_ticket_code(),
            funnel_id=funnel.id,
            lead_data=dict(lead_data),
            created_at=now,
            expires_at=expires_at,
            ip_address=ip_address or "unknown",
        )
        try:
            await store.create_ticket(ticket)
            break
        except ValueError:
            # Code collision
            if attempt == MAX_CODE_ATTEMPTS - 1:
                raise
            logger.warning(f"[TICKET] Code {ticket.ticket_code} already taken, retrying")

    logger.info(f"[TICKET] Issued {ticket.ticket_code} for funnel '{funnel_slug}' (expires {expires_at.isoformat()})")
    return IssuedTicket(
        ticket_code=ticket.ticket_code,
        chat_url=chat_url(chat_base_url or config.CHAT_BASE_URL, funnel_slug, ticket.ticket_code),
        expires_at=expires_at,
    )


def parse_leads_csv(content: str) -> List[Dict[str, str]]:
    """One lead-data dict per CSV row; headers normalised, blank cells left out."""
    if not content or not content.strip():
        return []
    try:
        df = pd.read_csv(StringIO(content), dtype=str)
    except Exception as e:
        raise ValueError(f"Invalid CSV format: {e}")

    df.columns = [str(h).strip().lower() for h in df.columns]
    leads = []
    for row in df.to_dict("records"):
        lead = {key: value.strip() for key, value in row.items() if isinstance(value, str) and value.strip()}
        if lead:
            leads.append(lead)
    return leads


async def import_tickets_from_csv(
    store: SessionStore,
    funnel_slug: str,
    content: str,
    expiration_hours: int = config.TICKET_EXPIRATION_HOURS,
    chat_base_url: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> List[IssuedTicket]:
    leads = parse_leads_csv(content)
    logger.info(f"[TICKET_IMPORT] Parsed {len(leads)} leads for funnel '{funnel_slug}'")

    issued = []
    for lead_data in leads:
        issued.append(await create_ticket(
            store,
            funnel_slug,
            lead_data,
            expiration_hours=expiration_hours,
            chat_base_url=chat_base_url,
            ip_address=ip_address,
        ))
    logger.info(f"[TICKET_IMPORT] Issued {len(issued)} tickets for funnel '{funnel_slug}'")
    return issued
