import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, Uuid

from supportdesk.database import Base, TZDateTime, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    role = Column(Text, nullable=False, default="customer")  # customer, support, admin
    display_name = Column(Text)
    agent_greeting = Column(Text)
    auto_greeting_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(TZDateTime, default=utcnow)

    @property
    def first_name(self) -> str:
        name = (self.display_name or "").strip()
        return name.split()[0] if name else "Support"
