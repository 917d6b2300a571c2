from dataclasses import dataclass
from typing import Optional

from chatbridge.core.text import extract_chat_text


@dataclass(frozen=True)
class MessageRecord:
    id: str
    author_display_name: str
    raw_content: str
    sent_at: float
    is_from_managed_sender: bool = True

    @property
    def chat_text(self) -> str:
        return extract_chat_text(self.raw_content)

    def age_ms(self, now: float) -> float:
        return (now - self.sent_at) * 1000


@dataclass
class ChatEvent:
    chat_type: str
    sender: str
    message: str
    world: Optional[str] = None
    avatar_url: Optional[str] = None
