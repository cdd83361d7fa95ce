import uuid

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from supportdesk.database import Base, TZDateTime, utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("tenant_id", "customer_id", name="uq_conversation_tenant_customer"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    customer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    status = Column(Text, nullable=False, default="ai_handling")  # ai_handling, available, support_staff_handling, resolved

    ai_processing = Column(Boolean, nullable=False, default=False)
    ai_processing_started_at = Column(TZDateTime)
    ai_attempt_id = Column(Text)
    pending_job_id = Column(Text)
    last_answered_message_id = Column(Uuid)

    participating_agents = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    handoff_reason = Column(Text)
    handoff_triggered_at = Column(TZDateTime)
    external_thread_id = Column(Text)

    message_count = Column(Integer, nullable=False, default=0)
    first_message_at = Column(TZDateTime)
    last_message_at = Column(TZDateTime)
    last_agent_message_at = Column(TZDateTime)
    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow)

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
