from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.widget import ChatRequest, ChatResponse, InitRequest, InitResponse
from app.services.channel_resolver import resolve_by_embed_key
from app.services.channels import WebsiteAdapter
from app.services.rate_limiter import rate_limit

router = APIRouter(tags=["widget"])

DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"

website_adapter = WebsiteAdapter()


@router.post("/bot-chat", response_model=ChatResponse)
def bot_chat(request: ChatRequest, db: Session = Depends(get_db), _limit=Depends(rate_limit("chat"))):
    """One widget turn. Nothing is stored when the completion gateway fails."""
    reply = website_adapter.handle_turn(db, request)
    db.commit()
    return ChatResponse(response=reply.reply_text, conversation_id=reply.conversation_id, escalated=reply.escalated)


@router.post("/bot-init", response_model=InitResponse)
def bot_init(request: InitRequest, db: Session = Depends(get_db)):
    bot, channel = resolve_by_embed_key(db, request.embed_key)
    return InitResponse(
        bot_name=bot.name,
        welcome_message=bot.welcome_message or DEFAULT_WELCOME_MESSAGE,
        channel_type=channel.channel_type,
    )
