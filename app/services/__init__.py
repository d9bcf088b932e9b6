from app.services.conversation_service import (
    find_open_conversation,
    get_conversation_for_bot,
    get_or_create_conversation,
    set_status,
    touch_conversation,
)
from app.services.message_service import (
    append_message,
    get_conversation_history,
    list_messages,
)
from app.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    escalate,
    reopen,
    resolve,
    transition,
)
