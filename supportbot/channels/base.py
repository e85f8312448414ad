"""Base abstractions for chat channel adapters."""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from supportbot.schemas import NormalizedMessage


class ChannelAdapter(ABC):
    """Channel-specific parsing and delivery behind one send operation."""

    #: Uppercase channel identifier stored on users, conversations and jobs.
    channel_type: str

    @abstractmethod
    async def send_message(self, to: str, text: str) -> None:
        """Deliver ``text`` to the channel user ``to``."""

    @abstractmethod
    def parse_webhook(self, payload: Mapping[str, Any]) -> Optional[NormalizedMessage]:
        """Convert a webhook payload into a normalized message, or None to discard it."""

    def verify_signature(self, url: str, params: Mapping[str, Any], signature: Optional[str]) -> bool:
        """Validate authenticity of the webhook payload.

        The default implementation accepts everything.
        """
        return True
