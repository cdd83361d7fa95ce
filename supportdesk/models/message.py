import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from supportdesk.database import Base, TZDateTime, utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    tenant_id = Column(Uuid, nullable=False)
    role = Column(Text, nullable=False)  # customer, ai, agent, system
    content = Column(Text, nullable=False)
    sender_id = Column(Uuid)
    sender_name = Column(Text)
    system_message_type = Column(Text)  # handoff, agent_joined, agent_left, issue_resolved

    ai_model = Column(Text)
    tokens_used = Column(Integer)
    processing_time_ms = Column(Integer)

    attachment_url = Column(Text)
    attachment_name = Column(Text)
    attachment_size = Column(Integer)
    attachment_type = Column(Text)

    read_by_agent_at = Column(TZDateTime)
    read_by_customer_at = Column(TZDateTime)
    created_at = Column(TZDateTime, nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
