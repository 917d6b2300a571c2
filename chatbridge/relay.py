import asyncio
import logging
from typing import Optional, Set, Tuple

from chatbridge.config import AppConfig
from chatbridge.core.dedup import DuplicateFilter, SweepReport
from chatbridge.core.errors import DeleteFailed, SendFailed
from chatbridge.core.models import ChatEvent, MessageRecord
from chatbridge.core.ports import MessageSender
from chatbridge.core.text import format_chat_message
from chatbridge.storage.event_buffer import EventBuffer

logger = logging.getLogger(__name__)

# Discord rejects webhook usernames longer than this
MAX_USERNAME_LENGTH = 80


class ChatRelay:
    def __init__(
        self,
        config: AppConfig,
        dedup: DuplicateFilter,
        sender: MessageSender,
        events: EventBuffer,
    ):
        self.config = config
        self.dedup = dedup
        self.sender = sender
        self.events = events
        self._in_flight: Set[Tuple[str, str]] = set()

    def display_name(self, event: ChatEvent) -> str:
        fmt = self.config.format
        template = fmt.world_template if event.world else fmt.name_template
        name = template.format(sender=event.sender, world=event.world or "").strip()
        return name[:MAX_USERNAME_LENGTH]

    def format_body(self, event: ChatEvent) -> str:
        fmt = self.config.format
        chat_type = event.chat_type.lower()
        slug = fmt.slugs.get(chat_type, chat_type.title())
        prefix = fmt.prefixes.get(chat_type, "")
        return format_chat_message(event.message.strip(), slug, prefix, fmt.emphasis)

    async def relay(self, event: ChatEvent) -> Optional[MessageRecord]:
        chat_type = event.chat_type.lower()
        if chat_type not in self.config.format.chat_types:
            self.events.add("ignored", chat_type=chat_type, reason="chat_type_disabled")
            return None
        if not event.message.strip():
            return None

        display_name = self.display_name(event)
        raw_content = self.format_body(event)
        key = (display_name, event.message.strip())
        # same candidate already on its way out from this process
        if key in self._in_flight or self.dedup.should_suppress(display_name, raw_content):
            self.events.add("suppressed", name=display_name, chat_type=chat_type)
            return None

        self._in_flight.add(key)
        try:
            record = await self.sender.send(display_name, raw_content, event.avatar_url)
        except SendFailed as exc:
            logger.warning("Send failed for %s: %s", display_name, exc)
            self.events.add("send_failed", name=display_name, detail=str(exc))
            raise
        finally:
            self._in_flight.discard(key)

        self.dedup.register(record)
        self.events.add("sent", id=record.id, name=display_name, chat_type=chat_type)
        return record

    async def sweep(self) -> Optional[SweepReport]:
        try:
            report = await self.dedup.reconcile()
        except DeleteFailed as exc:
            self.events.add("sweep_failed", id=exc.message_id, detail=str(exc))
            raise
        if report and (report.deleted or report.missing):
            self.events.add("reconciled", **report.to_dict())
        return report

    async def run_sweeps(self, stop: asyncio.Event) -> None:
        tick = self.config.app.sweep_tick_seconds
        logger.info("Duplicate sweep loop started (tick %.2fs)", tick)
        while not stop.is_set():
            try:
                await self.sweep()
            except DeleteFailed:
                logger.exception("Duplicate sweep failed, retrying next cycle")
            try:
                await asyncio.wait_for(stop.wait(), timeout=tick)
            except asyncio.TimeoutError:
                pass
        logger.info("Duplicate sweep loop stopped")

    def stats(self) -> dict:
        return {
            "store_size": len(self.dedup.store),
            "counts": dict(self.events.counts),
        }
