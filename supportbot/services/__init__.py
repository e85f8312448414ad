from supportbot.services.conversation_service import (
    load_context,
    resolve_conversation,
    resolve_user,
    save_ai_response,
    save_user_message,
)
from supportbot.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    close,
    hand_off,
    transition,
)
