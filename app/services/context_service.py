"""Assemble the system prompt for a turn."""

from typing import List, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import KnowledgeEntry
from app.models.channel import MESSAGING_CHANNEL_TYPES

KNOWLEDGE_LIMIT = 10

GUIDELINES = """Guidelines:
1. Be helpful, friendly, and professional.
2. If you cannot help with something or the request is beyond your capabilities, include [ESCALATE: <reason>] at the end of your response.
3. Use the knowledge base and any store information above to answer questions accurately.
4. If you don't know something, say so honestly and offer to connect the user with a human agent instead of making things up."""

MESSAGING_GUIDELINE = "5. Keep responses concise and conversational, suitable for {channel} messaging."


def get_knowledge_entries(db: Session, bot_id: UUID, limit: int = KNOWLEDGE_LIMIT) -> List[KnowledgeEntry]:
    return (
        db.query(KnowledgeEntry)
        .filter(KnowledgeEntry.bot_id == bot_id)
        .order_by(KnowledgeEntry.created_at.asc())
        .limit(limit)
        .all()
    )


def format_knowledge_context(entries: Sequence[KnowledgeEntry]) -> str:
    if not entries:
        return ""
    lines = [f"- {entry.title}: {entry.content}" for entry in entries]
    return "Relevant Knowledge Base:\n" + "\n".join(lines)


def build_system_prompt(
    instructions: str,
    knowledge_context: str = "",
    commerce_context: str = "",
    channel_type: str = "website",
) -> str:
    """Instructions verbatim, then knowledge, then store data, then the fixed guidelines."""
    parts = [instructions or ""]
    if knowledge_context:
        parts.append(knowledge_context)
    if commerce_context:
        parts.append(commerce_context)

    guidelines = GUIDELINES
    if channel_type in MESSAGING_CHANNEL_TYPES:
        channel_name = "WhatsApp" if channel_type == "whatsapp" else "Instagram"
        guidelines += "\n" + MESSAGING_GUIDELINE.format(channel=channel_name)
    parts.append(guidelines)

    return "\n\n".join(parts)
