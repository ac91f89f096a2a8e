"""
Abstract messaging gateway the quiz core delivers responses through.
"""
from abc import ABC, abstractmethod
from typing import Sequence

from .models import Response


class MessagingGateway(ABC):
    """
    Outbound side of a chat transport.

    Implementations raise TransportError when a message cannot be delivered.
    """

    @abstractmethod
    async def send_text(self, chat_id: int, text: str) -> None:
        """Send a plain text message."""

    @abstractmethod
    async def send_image(self, chat_id: int, image_url: str) -> None:
        """Send an image by URL."""

    @abstractmethod
    async def send_choices(self, chat_id: int, text: str, options: Sequence[str]) -> None:
        """Send a text prompt with selectable quick-reply options."""

    async def send(self, chat_id: int, response: Response) -> None:
        """Deliver a response using the method matching its shape."""
        if response.is_image:
            await self.send_image(chat_id, response.image_url)
        elif response.has_choices:
            await self.send_choices(chat_id, response.text, response.options)
        else:
            await self.send_text(chat_id, response.text)

    async def clear_choices(self, chat_id: int) -> None:
        """Withdraw any quick-reply options still offered to a chat."""
