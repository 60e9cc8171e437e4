import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    """Something shared alongside a message.

    ``kind`` is "link" (payload is the URL) or "document" (payload is the extracted text).
    """
    kind: str
    payload: str
    file_name: str = ""


@dataclass
class InboundMessage:
    sender_id: str
    text: str = ""
    display_name: str = ""
    attachment: Optional[Attachment] = None
    phone: str = ""


class Transport(ABC):
    """Send side of the messaging platform."""

    @abstractmethod
    def send_text(self, recipient_id: str, text: str):
        """Deliver ``text``. Raises DeliveryError on failure."""
        pass

    def start_typing(self, recipient_id: str):
        pass

    def stop_typing(self, recipient_id: str):
        pass

    @abstractmethod
    def resolve_recipient(self, phone: str) -> Optional[str]:
        """Map a phone number to the platform id used as the user's jid, or None."""
        pass


def deliver_inbound(transport: Transport, coordinator, message: InboundMessage) -> Optional[str]:
    """Run one inbound message through the coordinator with typing presence around it."""
    transport.start_typing(message.sender_id)
    try:
        reply = coordinator.handle_inbound(message)
    finally:
        transport.stop_typing(message.sender_id)
    if reply:
        transport.send_text(message.sender_id, reply)
    return reply
