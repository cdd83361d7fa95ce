import uuid

from sqlalchemy import Column, Integer, Text, Uuid

from supportdesk.database import Base, TZDateTime, utcnow


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    ai_responses_per_month = Column(Integer, nullable=False, default=0)
    created_at = Column(TZDateTime, default=utcnow)
