import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, validator


DEFAULT_SLUGS: Dict[str, str] = {
    "say": "Say",
    "shout": "Shout",
    "yell": "Yell",
    "tell": "Tell",
    "party": "Party",
    "alliance": "Alliance",
    "fc": "FC",
    "novice": "NN",
    "ls1": "LS1",
    "ls2": "LS2",
    "cwls1": "CWLS1",
    "cwls2": "CWLS2",
    "echo": "Echo",
}


class DiscordIntentsConfig(BaseModel):
    message_content: bool = True


class DiscordConfig(BaseModel):
    token_env: str = "DISCORD_TOKEN"
    webhook_url_env: str = "DISCORD_WEBHOOK_URL"
    channel_id: int = 0
    observe_channel: bool = True
    intents: DiscordIntentsConfig = DiscordIntentsConfig()
    slash_command_guilds: List[int] = Field(default_factory=list)


class WebhookConfig(BaseModel):
    timeout_seconds: float = 10.0
    max_retries: int = 3
    avatar_url: Optional[str] = None

    @validator("max_retries")
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("webhook.max_retries must be at least 1")
        return v


class DedupConfig(BaseModel):
    enabled: bool = True
    outgoing_window_ms: int = 2000
    retention_ms: int = 10000
    sweep_interval_ms: int = 1000
    # compare pairs only when sent within this many ms of each other; None disables
    max_pair_delta_ms: Optional[int] = None

    @validator("outgoing_window_ms", "retention_ms", "sweep_interval_ms")
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("dedup windows must be positive")
        return v

    @validator("max_pair_delta_ms")
    def validate_pair_delta(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("dedup.max_pair_delta_ms must be positive or null")
        return v


class FormatConfig(BaseModel):
    emphasis: str = "**"
    name_template: str = "{sender}"
    world_template: str = "{sender}@{world}"
    slugs: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SLUGS))
    prefixes: Dict[str, str] = Field(default_factory=dict)
    chat_types: List[str] = Field(default_factory=lambda: list(DEFAULT_SLUGS))

    @validator("emphasis")
    def validate_emphasis(cls, v: str) -> str:
        allowed = {"", "*", "**", "_", "__"}
        if v not in allowed:
            raise ValueError(f"format.emphasis must be one of {sorted(allowed)}")
        return v


class AdminConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8000
    token_env: str = "ADMIN_TOKEN"


class AppMeta(BaseModel):
    name: str = "ChatBridge"
    logging_level: str = "INFO"
    sweep_tick_seconds: float = 0.5


class AppConfig(BaseModel):
    app: AppMeta = AppMeta()
    discord: DiscordConfig = DiscordConfig()
    webhook: WebhookConfig = WebhookConfig()
    dedup: DedupConfig = DedupConfig()
    format: FormatConfig = FormatConfig()
    admin: AdminConfig = AdminConfig()

    def webhook_url(self) -> str:
        return os.getenv(self.discord.webhook_url_env, "")

    def bot_token(self) -> str:
        return os.getenv(self.discord.token_env, "")


def load_yaml_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    config = AppConfig.parse_obj(data)

    log_level_override = os.getenv("LOG_LEVEL")
    if log_level_override:
        config.app.logging_level = log_level_override
    return config


def save_yaml_config(config: AppConfig, path: str | Path) -> None:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config.dict(), f, allow_unicode=True, sort_keys=False)
