import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel

from chatfunnel import config
from chatfunnel.api.deps import client_ip, get_store
from chatfunnel.engine.errors import ScriptUnavailableError
from chatfunnel.engine.store import SessionStore
from chatfunnel.services.tickets import create_ticket, import_tickets_from_csv

logger = logging.getLogger(__name__)
router = APIRouter()


class TicketRequest(BaseModel):
    funnel_slug: str
    lead_data: Dict[str, Any]
    expiration_hours: int = config.TICKET_EXPIRATION_HOURS
    chat_base_url: Optional[str] = None


@router.post("/tickets", status_code=201)
async def issue_ticket(body: TicketRequest, request: Request, store: SessionStore = Depends(get_store)):
    try:
        issued = await create_ticket(
            store,
            body.funnel_slug,
            body.lead_data,
            expiration_hours=body.expiration_hours,
            chat_base_url=body.chat_base_url,
            ip_address=client_ip(request.headers),
        )
    except ScriptUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, **issued.model_dump(mode="json")}


@router.post("/tickets/import", status_code=201)
async def import_tickets(
    request: Request,
    funnel_slug: str = Form(...),
    expiration_hours: int = Form(config.TICKET_EXPIRATION_HOURS),
    file: UploadFile = File(...),
    store: SessionStore = Depends(get_store),
):
    """Issue one ticket per row of an uploaded CSV of leads."""
    raw = await file.read()
    logger.info(f"[TICKET_IMPORT] File '{file.filename}' received for funnel '{funnel_slug}'")
    try:
        issued = await import_tickets_from_csv(
            store,
            funnel_slug,
            raw.decode("utf-8-sig"),
            expiration_hours=expiration_hours,
            ip_address=client_ip(request.headers),
        )
    except ScriptUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ValueError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "success": True,
        "count": len(issued),
        "tickets": [ticket.model_dump(mode="json") for ticket in issued],
    }
