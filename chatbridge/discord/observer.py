import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from chatbridge.config import AppConfig
from chatbridge.core.errors import DeleteFailed
from chatbridge.core.models import MessageRecord
from chatbridge.relay import ChatRelay

logger = logging.getLogger(__name__)


def record_from_message(message: discord.Message, webhook_id: str) -> MessageRecord:
    return MessageRecord(
        id=str(message.id),
        author_display_name=message.author.name,
        raw_content=message.content or "",
        sent_at=message.created_at.timestamp(),
        is_from_managed_sender=message.webhook_id is not None and str(message.webhook_id) == webhook_id,
    )


class ChannelObserver(commands.Bot):
    """Watches the relay channel so posts from other relay instances are seen.

    Every message posted by our webhook, whichever process sent it, goes into
    the record store, and each arrival nudges the (throttled) sweep.
    """

    def __init__(self, config: AppConfig, relay: ChatRelay, webhook_id: str):
        intents = discord.Intents.default()
        intents.message_content = config.discord.intents.message_content
        intents.messages = True
        intents.guilds = True
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.relay = relay
        self.webhook_id = webhook_id

        self.tree.add_command(self._cmd_status())

    async def setup_hook(self) -> None:
        if self.config.discord.slash_command_guilds:
            for gid in self.config.discord.slash_command_guilds:
                await self.tree.sync(guild=discord.Object(id=gid))
        else:
            await self.tree.sync()
        logger.info("Slash commands synced")

    def _cmd_status(self) -> app_commands.Command:
        @app_commands.command(name="bridge_status", description="Show relay dedup status")
        async def status_cmd(interaction: discord.Interaction):
            stats = self.relay.stats()
            counts = stats["counts"]
            await interaction.response.send_message(
                f"Tracked messages: {stats['store_size']}, "
                f"sent: {counts.get('sent', 0)}, "
                f"suppressed: {counts.get('suppressed', 0)}, "
                f"reconciled: {counts.get('reconciled', 0)}",
                ephemeral=True,
            )

        return status_cmd

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%s)", self.user, self.user.id if self.user else "")

    async def on_message(self, message: discord.Message) -> None:
        await self.observe(message)

    async def observe(self, message: discord.Message) -> Optional[MessageRecord]:
        if message.channel.id != self.config.discord.channel_id:
            return None
        record = record_from_message(message, self.webhook_id)
        if not record.is_from_managed_sender:
            return None
        # our own sends arrive here too, the store ignores known ids
        self.relay.dedup.register(record)
        try:
            await self.relay.sweep()
        except DeleteFailed:
            logger.exception("Duplicate sweep failed after observing %s", record.id)
        return record
