"""
SQLAlchemy database models.

Models are organized by domain:
- base: Base declarative class
- user: User profile
- influencer: AI persona
- chat: Conversations and messages
- billing: Plans, subscriptions, token ledger, webhook events

Import any model from this module:
    from persona_chat.db.models import User, Conversation, ChatMessage
"""

# Base class (must be imported first)
from .base import Base

from .user import User
from .influencer import Influencer
from .chat import Conversation, ChatMessage
from .billing import Plan, Subscription, TokenTransaction, WebhookEvent

__all__ = [
    "Base",
    "User",
    "Influencer",
    "Conversation",
    "ChatMessage",
    "Plan",
    "Subscription",
    "TokenTransaction",
    "WebhookEvent",
]
