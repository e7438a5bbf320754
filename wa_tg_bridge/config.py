"""
Configuration management using pydantic-settings.

- Loads from environment variables.
- Also loads from a `.env` file in the current working directory (see env.example).
- Feature toggles are plain boolean fields so the command console can flip
  them at runtime on the live settings object.
"""

from typing import Dict, Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, EnvSettingsSource


class LenientEnvSettingsSource(EnvSettingsSource):
    """Env source that falls back to raw strings for complex values."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except ValueError:
            return value


# Operator-facing feature names (as typed in `/config`) -> Settings attribute.
FEATURE_FLAGS: Dict[str, str] = {
    "statusSync": "feature_status_sync",
    "profilePicSync": "feature_profile_pic_sync",
    "autoUpdateContactNames": "feature_auto_update_contact_names",
    "autoUpdateTopicNames": "feature_auto_update_topic_names",
    "readReceipts": "feature_read_receipts",
    "presenceUpdates": "feature_presence_updates",
    "biDirectional": "feature_bi_directional",
    "callLogs": "feature_call_logs",
}


class Settings(BaseSettings):
    # Telegram
    telegram_bot_token: Optional[str] = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram Bot API token from BotFather",
    )
    telegram_chat_id: Optional[int] = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Forum-enabled supergroup that hosts one topic per WhatsApp chat",
    )
    telegram_webhook_secret: Optional[str] = Field(
        default=None,
        alias="TELEGRAM_WEBHOOK_SECRET",
        description="Path-level shared secret for webhook URL",
    )
    telegram_api_base: str = Field(
        default="https://api.telegram.org", alias="TELEGRAM_API_BASE"
    )
    telegram_update_mode: str = Field(
        default="webhook",
        alias="TELEGRAM_UPDATE_MODE",
        description="How Telegram updates arrive: webhook|polling",
    )
    telegram_log_channel: Optional[int] = Field(
        default=None,
        alias="TELEGRAM_LOG_CHANNEL",
        description="Optional channel that receives bridge lifecycle notices",
    )

    public_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="PUBLIC_BASE_URL",
        description="Public base URL where this service is reachable (for setWebhook)",
    )

    # WhatsApp gateway
    whatsapp_gateway_url: str = Field(
        default="http://127.0.0.1:3000",
        alias="WHATSAPP_GATEWAY_URL",
        description="Base URL of the WhatsApp Web gateway sidecar",
    )
    whatsapp_gateway_token: Optional[str] = Field(
        default=None,
        alias="WHATSAPP_GATEWAY_TOKEN",
        description="Bearer token presented to the gateway",
    )
    whatsapp_webhook_secret: Optional[str] = Field(
        default=None,
        alias="WHATSAPP_WEBHOOK_SECRET",
        description="Path-level shared secret for the gateway event webhook",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./bridge.db",
        alias="DATABASE_URL",
        description="Async SQLAlchemy URL of the mapping store",
    )
    temp_dir: str = Field(
        default="./temp",
        alias="TEMP_DIR",
        description="Scratch directory for media conversion",
    )

    # Timing
    contact_sync_interval: float = Field(default=120.0, alias="CONTACT_SYNC_INTERVAL")
    topic_verify_interval: float = Field(default=300.0, alias="TOPIC_VERIFY_INTERVAL")
    message_max_age: float = Field(
        default=60.0,
        alias="MESSAGE_MAX_AGE",
        description="WhatsApp messages older than this many seconds are not relayed",
    )

    # Feature toggles
    feature_status_sync: bool = Field(default=True, alias="FEATURE_STATUS_SYNC")
    feature_profile_pic_sync: bool = Field(default=True, alias="FEATURE_PROFILE_PIC_SYNC")
    feature_auto_update_contact_names: bool = Field(
        default=True, alias="FEATURE_AUTO_UPDATE_CONTACT_NAMES"
    )
    feature_auto_update_topic_names: bool = Field(
        default=True, alias="FEATURE_AUTO_UPDATE_TOPIC_NAMES"
    )
    feature_read_receipts: bool = Field(default=True, alias="FEATURE_READ_RECEIPTS")
    feature_presence_updates: bool = Field(default=True, alias="FEATURE_PRESENCE_UPDATES")
    feature_bi_directional: bool = Field(default=True, alias="FEATURE_BI_DIRECTIONAL")
    feature_call_logs: bool = Field(default=True, alias="FEATURE_CALL_LOGS")
    feature_welcome_messages: bool = Field(default=True, alias="FEATURE_WELCOME_MESSAGES")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            LenientEnvSettingsSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("telegram_update_mode", mode="before")
    @classmethod
    def _parse_update_mode(cls, value):
        if value is None:
            return "webhook"
        mode = str(value).strip().lower()
        if mode not in ("webhook", "polling"):
            raise ValueError("TELEGRAM_UPDATE_MODE must be 'webhook' or 'polling'")
        return mode

    def feature(self, name: str) -> bool:
        """Look up a feature toggle by its operator-facing name."""
        return bool(getattr(self, FEATURE_FLAGS[name]))

    def set_feature(self, name: str, enabled: bool) -> None:
        if name not in FEATURE_FLAGS:
            raise KeyError(name)
        setattr(self, FEATURE_FLAGS[name], enabled)


settings = Settings()
"""
Singleton settings object used across modules.

Usage:
    from . import config
    config.settings.telegram_chat_id
    config.settings.feature("statusSync")
"""
