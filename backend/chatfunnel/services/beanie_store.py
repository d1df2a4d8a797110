import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chatfunnel.engine.blocks import Block
from chatfunnel.engine.records import Conversation, Funnel, LeadResponse, LeadTicket
from chatfunnel.engine.store import SessionStore
from chatfunnel.models.block import BlockModel
from chatfunnel.models.conversation import ConversationModel
from chatfunnel.models.funnel import FunnelModel
from chatfunnel.models.lead_response import LeadResponseModel
from chatfunnel.models.lead_ticket import LeadTicketModel

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


async def _with_retry(description: str, write: Callable[[], Awaitable[Any]]) -> Any:
    for attempt in range(MAX_RETRIES):
        try:
            return await write()
        except Exception as e:
            if attempt == MAX_RETRIES - 1:
                logger.error(f"[STORE] {description} failed after {MAX_RETRIES} attempts: {e}")
                raise
            logger.warning(f"[STORE] Retry {attempt + 1}/{MAX_RETRIES} for {description}: {e}")
            await asyncio.sleep(0.1 * (attempt + 1))


class BeanieSessionStore(SessionStore):
    """MongoDB persistence through the Beanie documents in chatfunnel.models."""

    async def save_funnel(self, funnel: Funnel) -> None:
        existing = await FunnelModel.find_one(FunnelModel.funnel_id == funnel.id)
        document = FunnelModel.from_record(funnel)
        if existing:
            document.id = existing.id
        await _with_retry(f"save funnel {funnel.id}", document.save)

    async def get_funnel(self, funnel_id: str) -> Optional[Funnel]:
        document = await FunnelModel.find_one(FunnelModel.funnel_id == funnel_id)
        return document.to_record() if document else None

    async def get_funnel_by_slug(self, slug: str) -> Optional[Funnel]:
        document = await FunnelModel.find_one(FunnelModel.slug == slug)
        return document.to_record() if document else None

    async def list_blocks(self, funnel_id: str) -> List[Block]:
        documents = await BlockModel.find(BlockModel.funnel_id == funnel_id).sort("+order_index").to_list()
        return [document.to_block() for document in documents]

    async def replace_blocks(self, funnel_id: str, blocks: List[Block]) -> None:
        logger.info(f"[STORE] Replacing blocks of funnel {funnel_id} with {len(blocks)} blocks")
        await BlockModel.find(BlockModel.funnel_id == funnel_id).delete()
        if blocks:
            await BlockModel.insert_many([BlockModel.from_block(block) for block in blocks])

    async def create_ticket(self, ticket: LeadTicket) -> None:
        existing = await LeadTicketModel.find_one(LeadTicketModel.ticket_code == ticket.ticket_code)
        if existing:
            raise ValueError(f"Ticket {ticket.ticket_code} already exists")
        await _with_retry(f"create ticket {ticket.ticket_code}", LeadTicketModel.from_record(ticket).insert)

    async def get_ticket(self, ticket_code: str, funnel_id: str) -> Optional[LeadTicket]:
        document = await LeadTicketModel.find_one(
            LeadTicketModel.ticket_code == ticket_code,
            LeadTicketModel.funnel_id == funnel_id,
        )
        return document.to_record() if document else None

    async def consume_ticket(self, ticket_code: str, conversation_id: str, used_at: datetime) -> bool:
        # Matches only while used_at is unset, so concurrent claims resolve to one winner.
        result = await LeadTicketModel.find_one({"ticket_code": ticket_code, "used_at": None}).update(
            {"$set": {"used_at": used_at, "session_id": conversation_id}}
        )
        return bool(result and result.modified_count)

    async def purge_expired_tickets(self, expired_before: datetime) -> int:
        result = await LeadTicketModel.find({
            "used_at": None,
            "expires_at": {"$lt": expired_before},
        }).delete()
        return result.deleted_count if result else 0

    async def create_conversation(self, conversation: Conversation) -> None:
        await _with_retry(
            f"create conversation {conversation.id}",
            ConversationModel.from_record(conversation).insert,
        )

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        document = await ConversationModel.find_one(ConversationModel.conversation_id == conversation_id)
        return document.to_record() if document else None

    async def record_activity(self, conversation_id: str, lead_data: Dict[str, Any], at: datetime) -> None:
        await _with_retry(
            f"record activity on conversation {conversation_id}",
            lambda: ConversationModel.find_one(ConversationModel.conversation_id == conversation_id).update(
                {"$set": {"lead_data": lead_data, "last_activity_at": at}}
            ),
        )

    async def mark_completed(self, conversation_id: str, at: datetime) -> None:
        await _with_retry(
            f"complete conversation {conversation_id}",
            lambda: ConversationModel.find_one(ConversationModel.conversation_id == conversation_id).update(
                {"$set": {"status": "completed", "completed_at": at}}
            ),
        )

    async def mark_idle_abandoned(self, idle_before: datetime) -> int:
        result = await ConversationModel.find({
            "status": "active",
            "last_activity_at": {"$lt": idle_before},
        }).update({"$set": {"status": "abandoned"}})
        return result.modified_count if result else 0

    async def add_response(self, response: LeadResponse) -> None:
        await _with_retry(
            f"save response for conversation {response.conversation_id}",
            LeadResponseModel.from_record(response).insert,
        )

    async def list_responses(self, conversation_id: str) -> List[LeadResponse]:
        documents = await LeadResponseModel.find(
            LeadResponseModel.conversation_id == conversation_id
        ).sort("+created_at").to_list()
        return [document.to_record() for document in documents]
