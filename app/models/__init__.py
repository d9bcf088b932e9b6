from app.models.bot import Bot
from app.models.channel import Channel
from app.models.commerce_integration import CommerceIntegration
from app.models.conversation import Conversation
from app.models.knowledge_entry import KnowledgeEntry
from app.models.message import Message

__all__ = [
    "Bot",
    "Channel",
    "Conversation",
    "Message",
    "KnowledgeEntry",
    "CommerceIntegration",
]
