import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ConversationStatus = Literal["active", "completed", "abandoned"]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Funnel(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    slug: str
    profile_name: str = ""
    profile_image_url: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    id: str = Field(default_factory=new_id)
    funnel_id: str
    status: ConversationStatus = "active"
    lead_data: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class LeadResponse(BaseModel):
    id: str = Field(default_factory=new_id)
    conversation_id: str
    block_id: Optional[str] = None
    response_text: str
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class LeadTicket(BaseModel):
    """Single-use hand-off record seeding a chat with captured form data."""

    ticket_code: str
    funnel_id: str
    lead_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    used_at: Optional[datetime] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


class TranscriptEntry(BaseModel):
    id: str
    author: Literal["bot", "user"]
    block_type: Optional[str] = None
    text: str = ""
    media_url: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime


class Notice(BaseModel):
    level: Literal["info", "warning", "error"]
    message: str
