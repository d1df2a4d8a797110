from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from typing import Optional

from chatfunnel.engine.records import LeadTicket


class LeadTicketModel(Document):
    ticket_code: str = Field(..., index=True, example="TKT-7Q2M9XAB")
    funnel_id: str = Field(..., index=True)
    lead_data: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
    used_at: Optional[datetime] = None
    session_id: Optional[str] = None  # Conversation that redeemed the ticket
    ip_address: Optional[str] = None

    class Settings:
        name = "lead_tickets"

    @classmethod
    def from_record(cls, ticket: LeadTicket) -> "LeadTicketModel":
        return cls(**ticket.model_dump())

    def to_record(self) -> LeadTicket:
        return LeadTicket(
            ticket_code=self.ticket_code,
            funnel_id=self.funnel_id,
            lead_data=self.lead_data,
            created_at=self.created_at,
            expires_at=self.expires_at,
            used_at=self.used_at,
            session_id=self.session_id,
            ip_address=self.ip_address,
        )
