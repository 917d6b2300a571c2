import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv

from chatbridge.config import AppConfig, load_yaml_config
from chatbridge.core.dedup import DuplicateFilter
from chatbridge.core.store import RecordStore
from chatbridge.discord.observer import ChannelObserver
from chatbridge.discord.webhook import WebhookClient
from chatbridge.relay import ChatRelay
from chatbridge.storage.event_buffer import EventBuffer
from chatbridge.web.admin_app import create_admin_app


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def run():
    load_dotenv()
    config_path = Path(os.getenv("CONFIG_PATH", "configs/config.yaml"))
    config: AppConfig = load_yaml_config(config_path)
    setup_logging(config.app.logging_level)
    logger = logging.getLogger(__name__)

    webhook_url = config.webhook_url()
    if not webhook_url:
        raise RuntimeError(f"Environment variable {config.discord.webhook_url_env} is not set")

    store = RecordStore()
    events = EventBuffer()
    webhook = WebhookClient(webhook_url, config.webhook)
    dedup = DuplicateFilter(
        store=store,
        deleter=webhook,
        config=config.dedup,
        log=logging.getLogger("chatbridge.dedupe"),
    )
    relay = ChatRelay(config=config, dedup=dedup, sender=webhook, events=events)
    stop = asyncio.Event()

    tasks = [relay.run_sweeps(stop)]

    if config.admin.enabled:
        admin_app = create_admin_app(
            config=config,
            relay=relay,
            events=events,
            config_path=config_path,
        )
        server = uvicorn.Server(
            uvicorn.Config(
                app=admin_app,
                host=config.admin.host,
                port=config.admin.port,
                log_level="info",
            )
        )

        async def start_admin():
            try:
                await server.serve()
            finally:
                # uvicorn owns the signal handlers, take the rest down with it
                stop.set()
                if observer is not None:
                    await observer.close()

        tasks.append(start_admin())

    observer: Optional[ChannelObserver] = None
    bot_token = config.bot_token()
    if config.discord.observe_channel and bot_token:
        observer = ChannelObserver(config, relay, webhook.webhook_id)
        tasks.append(observer.start(bot_token))
    elif config.discord.observe_channel:
        logger.warning(
            "%s not set, running without the channel observer; only this instance's sends are reconciled",
            config.discord.token_env,
        )

    logger.info("Starting %s for channel %s", config.app.name, config.discord.channel_id)
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        pass
    finally:
        stop.set()
        if observer is not None:
            await observer.close()
        await webhook.aclose()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
