"""AI response engine: one inbound visitor message in, one bot reply out.

Every channel runs the same turn:

1. resolve or create the conversation
2. append the visitor message
3. load recent history and knowledge entries
4. look up store data when the bot has a commerce integration
5. build the system prompt and call the completion gateway
6. let gateway errors propagate (nothing from the turn is committed)
7. strip the escalation marker from the reply
8. append the assistant message
9. escalate the conversation when the bot allows it
10. hand the reply back to the channel adapter for delivery
"""

import re
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ServiceError, UpstreamTerminalError
from app.logging_config import get_logger
from app.models import Bot, Conversation
from app.models.channel import MESSAGING_CHANNEL_TYPES
from app.services.alert_service import alert_critical
from app.services.commerce_service import build_commerce_context
from app.services.context_service import build_system_prompt, format_knowledge_context, get_knowledge_entries
from app.services.conversation_service import get_or_create_conversation, set_status, touch_conversation
from app.services.llm import GatewayProvider, LLMProvider
from app.services.message_service import append_message, get_conversation_history
from app.services.state_machine import ConversationStatus

logger = get_logger("ai_service")

ESCALATION_PATTERN = re.compile(r"\[ESCALATE:\s*(.+?)\]", re.IGNORECASE)
ESCALATION_SUFFIX = "I've notified our team and a team member will follow up with you shortly."
FALLBACK_REPLY = "I'm sorry, I couldn't generate a response."

TEMPERATURE = 0.7
WEBSITE_MAX_TOKENS = 1000
MESSAGING_MAX_TOKENS = 500

_llm_provider = None


@dataclass
class EscalationResult:
    text: str
    escalated: bool
    reason: Optional[str] = None


@dataclass
class BotReply:
    reply_text: str
    conversation_id: UUID
    escalated: bool
    escalation_reason: Optional[str] = None


def get_llm_provider() -> LLMProvider:
    """Get or create the gateway provider instance."""
    global _llm_provider
    if _llm_provider is None:
        if not settings.ai_gateway_api_key:
            logger.error("AI_GATEWAY_API_KEY not configured")
            raise ServiceError("AI service not configured")
        _llm_provider = GatewayProvider(
            api_key=settings.ai_gateway_api_key,
            base_url=settings.ai_gateway_url,
            default_model=settings.ai_model,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    return _llm_provider


def parse_escalation(text: str) -> EscalationResult:
    """Detect and strip `[ESCALATE: reason]` markers. Most replies have none."""
    match = ESCALATION_PATTERN.search(text or "")
    if not match:
        return EscalationResult(text=text, escalated=False)

    reason = match.group(1).strip()
    cleaned = ESCALATION_PATTERN.sub("", text).strip()
    cleaned = f"{cleaned}\n\n{ESCALATION_SUFFIX}" if cleaned else ESCALATION_SUFFIX
    return EscalationResult(text=cleaned, escalated=True, reason=reason)


def _max_tokens_for(channel_type: str) -> int:
    return MESSAGING_MAX_TOKENS if channel_type in MESSAGING_CHANNEL_TYPES else WEBSITE_MAX_TOKENS


def generate_reply(
    db: Session,
    bot: Bot,
    channel_type: str,
    visitor_id: str,
    message: str,
    conversation: Optional[Conversation] = None,
    visitor_name: Optional[str] = None,
    visitor_email: Optional[str] = None,
    provider: Optional[LLMProvider] = None,
) -> BotReply:
    if conversation is None:
        conversation = get_or_create_conversation(db, bot.id, channel_type, visitor_id, visitor_name, visitor_email)

    log_context = {"bot_id": str(bot.id), "conversation_id": str(conversation.id), "channel": channel_type}

    append_message(db, conversation.id, "user", message)

    history = get_conversation_history(db, conversation.id)
    knowledge_context = format_knowledge_context(get_knowledge_entries(db, bot.id))
    commerce = build_commerce_context(db, bot.id, message, visitor_email or conversation.visitor_email)

    system_prompt = build_system_prompt(
        bot.instructions,
        knowledge_context=knowledge_context,
        commerce_context=commerce.context_text,
        channel_type=channel_type,
    )
    messages = [{"role": "system", "content": system_prompt}, *history]

    provider = provider or get_llm_provider()
    try:
        response = provider.generate(
            messages=messages,
            model=settings.ai_model,
            temperature=TEMPERATURE,
            max_tokens=_max_tokens_for(channel_type),
        )
    except UpstreamTerminalError:
        alert_critical("AI gateway credits exhausted", log_context)
        raise

    content = (response.content or "").strip() or FALLBACK_REPLY
    escalation = parse_escalation(content)

    append_message(
        db,
        conversation.id,
        "assistant",
        escalation.text,
        metadata={
            "escalated": escalation.escalated,
            "commerce_context": commerce.used,
            "commerce_intent": commerce.intent.type,
        },
    )

    if escalation.escalated and bot.escalation_enabled:
        set_status(db, conversation, ConversationStatus.ESCALATED, escalation_reason=escalation.reason)
        logger.info("Conversation escalated", extra={"context": {**log_context, "reason": escalation.reason}})
    else:
        touch_conversation(db, conversation)

    return BotReply(
        reply_text=escalation.text,
        conversation_id=conversation.id,
        escalated=escalation.escalated,
        escalation_reason=escalation.reason,
    )
