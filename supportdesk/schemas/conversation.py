from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class StartConversationRequest(BaseModel):
    tenant_id: UUID
    customer_id: UUID


class Attachment(BaseModel):
    attachment_url: str
    attachment_name: Optional[str] = None
    attachment_size: Optional[int] = None
    attachment_type: Optional[str] = None


class CustomerMessageRequest(BaseModel):
    customer_id: UUID
    content: str
    attachment: Optional[Attachment] = None


class CustomerActionRequest(BaseModel):
    customer_id: UUID


class AgentActionRequest(BaseModel):
    agent_id: UUID


class AgentMessageRequest(BaseModel):
    agent_id: UUID
    content: str
    attachment: Optional[Attachment] = None


class ResolveRequest(BaseModel):
    resolved_by: str = "agent"
    agent_id: Optional[UUID] = None


class TypingRequest(BaseModel):
    user_id: UUID
    is_typing: bool


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    customer_id: UUID
    status: str
    ai_processing: bool
    participating_agents: List[str] = []
    handoff_reason: Optional[str] = None
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    updated_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    role: str
    content: str
    sender_id: Optional[UUID] = None
    sender_name: Optional[str] = None
    system_message_type: Optional[str] = None
    attachment_url: Optional[str] = None
    read_by_agent_at: Optional[datetime] = None
    read_by_customer_at: Optional[datetime] = None
    created_at: datetime


class ReadReceiptResponse(BaseModel):
    success: bool
    marked: int


class AcceptResponse(BaseModel):
    success: bool
    joined: bool
