"""Base transport interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain.models import Message


class TransportPort(ABC):
    """Abstract capability for talking to the messaging backend."""

    @abstractmethod
    async def fetch_messages(self, conversation_id: str) -> List[Message]:
        """Return the authoritative, ordered message list of a conversation."""
        pass

    @abstractmethod
    async def send_message(
        self,
        conversation_id: str,
        content: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Message:
        """Send a message and return it as stored by the server."""
        pass

    async def aclose(self) -> None:
        """Release any underlying connection resources."""
        pass
