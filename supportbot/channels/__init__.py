from supportbot.channels.base import ChannelAdapter
from supportbot.channels.whatsapp_twilio import ChannelSendError, WhatsAppTwilioAdapter, split_message

__all__ = ["ChannelAdapter", "ChannelSendError", "WhatsAppTwilioAdapter", "split_message"]
