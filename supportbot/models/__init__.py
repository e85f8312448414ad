from supportbot.models.analytics import ConversationAnalytics
from supportbot.models.chat_user import ChatUser, UserChannel
from supportbot.models.client_config import ClientConfig
from supportbot.models.conversation import Conversation
from supportbot.models.escalation import EscalationQueueEntry
from supportbot.models.inbound_job import InboundJob
from supportbot.models.message import Message
from supportbot.models.webhook_log import WebhookLog

__all__ = [
    "ChatUser",
    "UserChannel",
    "ClientConfig",
    "Conversation",
    "Message",
    "EscalationQueueEntry",
    "ConversationAnalytics",
    "InboundJob",
    "WebhookLog",
]
