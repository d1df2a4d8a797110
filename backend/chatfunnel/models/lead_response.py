from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from typing import Optional

from chatfunnel.engine.records import LeadResponse


class LeadResponseModel(Document):
    """
    One reply given by the end user. Append-only; created_at orders the
    transcript when a conversation is replayed for review.
    """
    response_id: str = Field(..., index=True)
    conversation_id: str = Field(..., index=True)
    block_id: Optional[str] = None  # None once the conversation reached its end
    response_text: str = Field(..., example="Maria")
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = Field(default=None, example="image")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "lead_responses"

    @classmethod
    def from_record(cls, response: LeadResponse) -> "LeadResponseModel":
        return cls(
            response_id=response.id,
            conversation_id=response.conversation_id,
            block_id=response.block_id,
            response_text=response.response_text,
            attachment_url=response.attachment_url,
            attachment_type=response.attachment_type,
            created_at=response.created_at,
        )

    def to_record(self) -> LeadResponse:
        return LeadResponse(
            id=self.response_id,
            conversation_id=self.conversation_id,
            block_id=self.block_id,
            response_text=self.response_text,
            attachment_url=self.attachment_url,
            attachment_type=self.attachment_type,
            created_at=self.created_at,
        )
