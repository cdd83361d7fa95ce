import uuid

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from supportdesk.database import Base, TZDateTime, utcnow


class Company(Base):
    """Tenant: owns conversations, AI configuration and the monthly AI quota."""

    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    plan_id = Column(Uuid, ForeignKey("plans.id"))

    ai_responses_this_month = Column(Integer, nullable=False, default=0)
    ai_responses_reset_at = Column(TZDateTime)
    usage_warning_sent = Column(Boolean, nullable=False, default=False)

    ai_personality = Column(Text, default="professional")  # professional, friendly, casual, technical
    ai_response_length = Column(Text, default="medium")  # brief, medium, detailed
    ai_system_prompt = Column(Text)
    ai_handoff_triggers = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    company_context = Column(Text)
    selected_ai_model = Column(Text)

    created_at = Column(TZDateTime, default=utcnow)

    plan = relationship("Plan")
