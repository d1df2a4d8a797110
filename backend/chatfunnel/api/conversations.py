import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from chatfunnel.api.deps import get_store
from chatfunnel.engine.store import SessionStore
from chatfunnel.services.review import (
    build_review_transcript,
    export_transcript_text,
    lead_contact_info,
    lead_display_name,
)

logger = logging.getLogger(__name__)
router = APIRouter()


async def _load(store: SessionStore, conversation_id: str):
    review = await build_review_transcript(store, conversation_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return review


@router.get("/conversations/{conversation_id}/transcript")
async def get_transcript(conversation_id: str, store: SessionStore = Depends(get_store)):
    conversation, entries = await _load(store, conversation_id)
    return {
        "conversation": conversation.model_dump(mode="json"),
        "lead_name": lead_display_name(conversation.lead_data),
        "lead_info": lead_contact_info(conversation.lead_data),
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


@router.get("/conversations/{conversation_id}/export", response_class=PlainTextResponse)
async def export_transcript(conversation_id: str, store: SessionStore = Depends(get_store)):
    conversation, entries = await _load(store, conversation_id)
    logger.info(f"[REVIEW] Exporting conversation {conversation_id}")
    return PlainTextResponse(
        export_transcript_text(conversation, entries),
        headers={"Content-Disposition": f'attachment; filename="conversa-{conversation_id}.txt"'},
    )
