from datetime import datetime
from typing import Any, Dict, List, Optional

from chatfunnel.engine.blocks import Block
from chatfunnel.engine.records import Conversation, Funnel, LeadResponse, LeadTicket


class SessionStore:
    """
    Persistence used by the interpreter and the services around it.

    Writes are targeted: each one touches only the fields it names, so a late
    write from a run never rewrites status set elsewhere.
    """

    # Funnels and scripts
    async def save_funnel(self, funnel: Funnel) -> None:
        raise NotImplementedError

    async def get_funnel(self, funnel_id: str) -> Optional[Funnel]:
        raise NotImplementedError

    async def get_funnel_by_slug(self, slug: str) -> Optional[Funnel]:
        raise NotImplementedError

    async def list_blocks(self, funnel_id: str) -> List[Block]:
        raise NotImplementedError

    async def replace_blocks(self, funnel_id: str, blocks: List[Block]) -> None:
        raise NotImplementedError

    # Tickets
    async def create_ticket(self, ticket: LeadTicket) -> None:
        raise NotImplementedError

    async def get_ticket(self, ticket_code: str, funnel_id: str) -> Optional[LeadTicket]:
        raise NotImplementedError

    async def consume_ticket(self, ticket_code: str, conversation_id: str, used_at: datetime) -> bool:
        raise NotImplementedError

    async def purge_expired_tickets(self, expired_before: datetime) -> int:
        raise NotImplementedError

    # Conversations
    async def create_conversation(self, conversation: Conversation) -> None:
        raise NotImplementedError

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        raise NotImplementedError

    async def record_activity(self, conversation_id: str, lead_data: Dict[str, Any], at: datetime) -> None:
        raise NotImplementedError

    async def mark_completed(self, conversation_id: str, at: datetime) -> None:
        raise NotImplementedError

    async def mark_idle_abandoned(self, idle_before: datetime) -> int:
        raise NotImplementedError

    # Responses
    async def add_response(self, response: LeadResponse) -> None:
        raise NotImplementedError

    async def list_responses(self, conversation_id: str) -> List[LeadResponse]:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local store for tests and running without MongoDB."""

    def __init__(self):
        self.funnels: Dict[str, Funnel] = {}
        self.blocks: Dict[str, List[Block]] = {}
        self.tickets: Dict[str, LeadTicket] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.responses: List[LeadResponse] = []

    async def save_funnel(self, funnel: Funnel) -> None:
        self.funnels[funnel.id] = funnel.model_copy(deep=True)

    async def get_funnel(self, funnel_id: str) -> Optional[Funnel]:
        funnel = self.funnels.get(funnel_id)
        return funnel.model_copy(deep=True) if funnel else None

    async def get_funnel_by_slug(self, slug: str) -> Optional[Funnel]:
        funnel = next((f for f in self.funnels.values() if f.slug == slug), None)
        return funnel.model_copy(deep=True) if funnel else None

    async def list_blocks(self, funnel_id: str) -> List[Block]:
        return sorted(self.blocks.get(funnel_id, []), key=lambda block: block.order_index)

    async def replace_blocks(self, funnel_id: str, blocks: List[Block]) -> None:
        self.blocks[funnel_id] = list(blocks)

    async def create_ticket(self, ticket: LeadTicket) -> None:
        if ticket.ticket_code in self.tickets:
            raise ValueError(f"Ticket {ticket.ticket_code} already exists")
        self.tickets[ticket.ticket_code] = ticket.model_copy(deep=True)

    async def get_ticket(self, ticket_code: str, funnel_id: str) -> Optional[LeadTicket]:
        ticket = self.tickets.get(ticket_code)
        if ticket is None or ticket.funnel_id != funnel_id:
            return None
        return ticket.model_copy(deep=True)

    async def consume_ticket(self, ticket_code: str, conversation_id: str, used_at: datetime) -> bool:
        ticket = self.tickets.get(ticket_code)
        if ticket is None or ticket.used_at is not None:
            return False
        ticket.used_at = used_at
        ticket.session_id = conversation_id
        return True

    async def purge_expired_tickets(self, expired_before: datetime) -> int:
        expired = [
            code
            for code, ticket in self.tickets.items()
            if ticket.used_at is None and ticket.expires_at < expired_before
        ]
        for code in expired:
            del self.tickets[code]
        return len(expired)

    async def create_conversation(self, conversation: Conversation) -> None:
        self.conversations[conversation.id] = conversation.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def record_activity(self, conversation_id: str, lead_data: Dict[str, Any], at: datetime) -> None:
        conversation = self.conversations[conversation_id]
        conversation.lead_data = dict(lead_data)
        conversation.last_activity_at = at

    async def mark_completed(self, conversation_id: str, at: datetime) -> None:
        conversation = self.conversations[conversation_id]
        conversation.status = "completed"
        conversation.completed_at = at

    async def mark_idle_abandoned(self, idle_before: datetime) -> int:
        count = 0
        for conversation in self.conversations.values():
            if conversation.status == "active" and conversation.last_activity_at < idle_before:
                conversation.status = "abandoned"
                count += 1
        return count

    async def add_response(self, response: LeadResponse) -> None:
        self.responses.append(response.model_copy(deep=True))

    async def list_responses(self, conversation_id: str) -> List[LeadResponse]:
        responses = [r for r in self.responses if r.conversation_id == conversation_id]
        return sorted(responses, key=lambda response: response.created_at)
