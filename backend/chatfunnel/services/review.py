import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from chatfunnel.engine.blocks import Block, MediaBlock, QuestionBlock, Script, TextBlock
from chatfunnel.engine.errors import MalformedScriptError
from chatfunnel.engine.records import Conversation, LeadResponse, TranscriptEntry
from chatfunnel.engine.store import SessionStore
from chatfunnel.engine.variables import LAST_RESPONSE_KEY, substitute_variables

logger = logging.getLogger(__name__)

SILENT_BLOCK_TYPES = ("delay", "typing_effect", "recording_effect", "end")
MEDIA_PLACEHOLDER = "(mídia)"


def lead_display_name(lead_data: Optional[Mapping[str, Any]]) -> str:
    data = lead_data or {}
    return data.get("nome") or data.get("name") or data.get("email") or "Lead sem nome"


def lead_contact_info(lead_data: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    data = lead_data or {}
    return {
        "email": data.get("email") or "",
        "contacto": data.get("contacto") or data.get("phone") or data.get("telefone") or "",
        "ticket": data.get("ticket_code") or "",
        "provincia": data.get("provincia") or "",
        "bairro": data.get("bairro") or "",
    }


def _response_entry(response: LeadResponse) -> TranscriptEntry:
    return TranscriptEntry(
        id=response.id,
        author="user",
        text=response.response_text,
        attachment_url=response.attachment_url,
        attachment_type=response.attachment_type,
        created_at=response.created_at,
    )


def _substitution_source(lead_data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    # Same source as the live run: ticket data only, never replies
    if "ticket_code" not in lead_data:
        return None
    return {key: value for key, value in lead_data.items() if key != LAST_RESPONSE_KEY}


def _visited_blocks(blocks: List[Block], funnel_id: str) -> List[Block]:
    try:
        return Script(blocks).chain()
    except MalformedScriptError as e:
        logger.warning(f"[REVIEW] Funnel {funnel_id} no longer forms a valid chain, listing all blocks: {e}")
        return blocks


async def build_review_transcript(
    store: SessionStore, conversation_id: str
) -> Optional[Tuple[Conversation, List[TranscriptEntry]]]:
    """
    Rebuild a stored conversation for a reviewer: every visible block of the
    funnel in the order a run visits them, each followed by the lead's
    responses to it. Responses given after the script ended come last.
    Returns None when the conversation does not exist.
    """
    conversation = await store.get_conversation(conversation_id)
    if not conversation:
        return None

    blocks = _visited_blocks(await store.list_blocks(conversation.funnel_id), conversation.funnel_id)
    responses = await store.list_responses(conversation_id)

    by_block: Dict[Optional[str], List[LeadResponse]] = defaultdict(list)
    for response in responses:
        by_block[response.block_id].append(response)

    variables = _substitution_source(conversation.lead_data)
    entries: List[TranscriptEntry] = []
    known_ids = set()
    for block in blocks:
        known_ids.add(block.id)
        if block.type not in SILENT_BLOCK_TYPES:
            text = ""
            if isinstance(block, (TextBlock, QuestionBlock, MediaBlock)):
                text = substitute_variables(block.content.text, variables)
            entries.append(TranscriptEntry(
                id=block.id,
                author="bot",
                block_type=block.type,
                text=text,
                media_url=getattr(block.content, "media_url", None) or None,
                options=list(getattr(block.content, "options", [])),
                created_at=block.created_at or conversation.started_at,
            ))
        entries.extend(_response_entry(response) for response in by_block.get(block.id, []))

    # Free messages after the end, and answers to blocks no longer on the chain
    leftovers = [r for block_id, items in by_block.items() if block_id not in known_ids for r in items]
    entries.extend(_response_entry(response) for response in sorted(leftovers, key=lambda r: r.created_at))

    logger.info(f"[REVIEW] Conversation {conversation_id}: {len(entries)} entries from {len(blocks)} blocks")
    return conversation, entries


def export_transcript_text(conversation: Conversation, entries: List[TranscriptEntry]) -> str:
    lines = [
        f"Conversa com {lead_display_name(conversation.lead_data)}",
        f"Data: {conversation.started_at.strftime('%d/%m/%Y %H:%M:%S')}",
        f"Status: {conversation.status}",
        "",
        "--- MENSAGENS ---",
        "",
    ]
    for entry in entries:
        sender = "Bot" if entry.author == "bot" else "Lead"
        lines.append(f"[{entry.created_at.strftime('%H:%M:%S')}] {sender}: {entry.text or MEDIA_PLACEHOLDER}")
        if entry.attachment_url:
            lines.append(f"Anexo: {entry.attachment_url}")
        lines.append("")
    return "\n".join(lines) + "\n"
