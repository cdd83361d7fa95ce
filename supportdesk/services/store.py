"""Storage access for conversations and messages.

All conversation writes from the AI pipeline go through `ConversationStore`, so a
conditional write (`patch_conversation_if`) is the only way a late job can touch
a conversation it no longer owns.
"""

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from supportdesk.database import utcnow
from supportdesk.models import Company, Conversation, Message, Plan, User


class ConversationStore:
    def __init__(self, db: Session):
        self.db = db

    def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        return self.db.get(Conversation, conversation_id, populate_existing=True)

    def find_conversation(self, tenant_id: UUID, customer_id: UUID) -> Optional[Conversation]:
        return (
            self.db.query(Conversation)
            .filter(Conversation.tenant_id == tenant_id, Conversation.customer_id == customer_id)
            .first()
        )

    def add_conversation(self, conversation: Conversation) -> Conversation:
        self.db.add(conversation)
        self.db.flush()
        return conversation

    def patch_conversation(self, conversation_id: UUID, **fields) -> None:
        fields.setdefault("updated_at", utcnow())
        self.db.execute(update(Conversation).where(Conversation.id == conversation_id).values(**fields))

    def patch_conversation_if(self, conversation_id: UUID, expected: dict, **fields) -> bool:
        """Apply `fields` only if every column in `expected` still holds its value."""
        fields.setdefault("updated_at", utcnow())
        stmt = update(Conversation).where(Conversation.id == conversation_id)
        for column, value in expected.items():
            attr = getattr(Conversation, column)
            stmt = stmt.where(attr.is_(None) if value is None else attr == value)
        result = self.db.execute(stmt.values(**fields))
        return result.rowcount == 1

    def insert_message(self, **fields) -> Message:
        message = Message(**fields)
        self.db.add(message)
        self.db.flush()
        return message

    def list_recent_messages(
        self,
        conversation_id: UUID,
        limit: int,
        since: Optional[datetime] = None,
    ) -> list[Message]:
        """Most recent messages in chronological order."""
        query = self.db.query(Message).filter(Message.conversation_id == conversation_id)
        if since is not None:
            query = query.filter(Message.created_at > since)
        rows = query.order_by(Message.created_at.desc()).limit(limit).all()
        return list(reversed(rows))

    def latest_message(self, conversation_id: UUID, roles: Iterable[str]) -> Optional[Message]:
        return (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id, Message.role.in_(list(roles)))
            .order_by(Message.created_at.desc())
            .first()
        )

    def stamp_read_receipts(self, conversation_id: UUID, roles: Iterable[str], column: str, at: datetime) -> int:
        """Stamp unread messages once. Already stamped rows are left alone."""
        attr = getattr(Message, column)
        result = self.db.execute(
            update(Message)
            .where(Message.conversation_id == conversation_id)
            .where(Message.role.in_(list(roles)))
            .where(attr.is_(None))
            .values({column: at})
        )
        return result.rowcount

    def get_company(self, tenant_id: UUID) -> Optional[Company]:
        return self.db.get(Company, tenant_id, populate_existing=True)

    def patch_company(self, tenant_id: UUID, **fields) -> None:
        self.db.execute(update(Company).where(Company.id == tenant_id).values(**fields))

    def patch_company_if(self, tenant_id: UUID, expected: dict, **fields) -> bool:
        stmt = update(Company).where(Company.id == tenant_id)
        for column, value in expected.items():
            stmt = stmt.where(getattr(Company, column) == value)
        return self.db.execute(stmt.values(**fields)).rowcount == 1

    def increment_ai_usage(self, tenant_id: UUID) -> int:
        self.db.execute(
            update(Company)
            .where(Company.id == tenant_id)
            .values(ai_responses_this_month=Company.ai_responses_this_month + 1)
        )
        company = self.get_company(tenant_id)
        return company.ai_responses_this_month if company else 0

    def list_tenants_due_for_reset(self, now: datetime) -> list[UUID]:
        rows = self.db.execute(select(Company.id).where(Company.ai_responses_reset_at <= now)).all()
        return [row[0] for row in rows]

    def get_plan(self, plan_id: Optional[UUID]) -> Optional[Plan]:
        if plan_id is None:
            return None
        return self.db.get(Plan, plan_id)

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self.db.get(User, user_id)

    def list_staff_ids(self, tenant_id: UUID, roles: Iterable[str] = ("support", "admin")) -> list[UUID]:
        rows = self.db.execute(
            select(User.id).where(User.tenant_id == tenant_id, User.role.in_(list(roles)))
        ).all()
        return [row[0] for row in rows]

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
