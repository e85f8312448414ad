from supportbot.schemas.message import ContextMessage, ConversationContext, NormalizedMessage
from supportbot.schemas.webhook import TwilioWebhookBody

__all__ = ["NormalizedMessage", "ContextMessage", "ConversationContext", "TwilioWebhookBody"]
