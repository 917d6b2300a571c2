from typing import Optional, Protocol

from chatbridge.core.models import MessageRecord


class MessageSender(Protocol):
    async def send(
        self, display_name: str, raw_content: str, avatar_url: Optional[str] = None
    ) -> MessageRecord:
        ...


class MessageDeleter(Protocol):
    async def delete(self, message_id: str) -> None:
        ...
