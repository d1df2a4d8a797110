from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from typing import Literal, Optional

from chatfunnel.engine.records import Conversation


class ConversationModel(Document):
    conversation_id: str = Field(..., index=True)
    funnel_id: str = Field(..., index=True)
    status: Literal["active", "completed", "abandoned"] = "active"
    lead_data: dict = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    class Settings:
        name = "conversations"

    @classmethod
    def from_record(cls, conversation: Conversation) -> "ConversationModel":
        return cls(
            conversation_id=conversation.id,
            funnel_id=conversation.funnel_id,
            status=conversation.status,
            lead_data=conversation.lead_data,
            started_at=conversation.started_at,
            last_activity_at=conversation.last_activity_at,
            completed_at=conversation.completed_at,
        )

    def to_record(self) -> Conversation:
        return Conversation(
            id=self.conversation_id,
            funnel_id=self.funnel_id,
            status=self.status,
            lead_data=self.lead_data,
            started_at=self.started_at,
            last_activity_at=self.last_activity_at,
            completed_at=self.completed_at,
        )
