from supportdesk.models.company import Company
from supportdesk.models.conversation import Conversation
from supportdesk.models.message import Message
from supportdesk.models.plan import Plan
from supportdesk.models.user import User

__all__ = [
    "Plan",
    "Company",
    "User",
    "Conversation",
    "Message",
]
