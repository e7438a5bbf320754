"""
SECURITY-FIRST test configuration for wa-tg-bridge.

CRITICAL: This configuration prevents ANY real HTTP requests during testing.
"""

from __future__ import annotations

import sys
import time
import pytest
import pytest_asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch, AsyncMock


def _ensure_project_root_on_syspath() -> None:
    # tests/ directory
    here = Path(__file__).resolve()
    # project root = parent of tests/
    project_root = here.parent.parent

    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


_ensure_project_root_on_syspath()

from wa_tg_bridge.schemas import (  # noqa: E402
    TgChat,
    TgForumTopic,
    TgMessage,
    WaGroupMetadata,
    WaMessage,
    WaMessageKey,
    WaSendResult,
)
from wa_tg_bridge.store import MappingStore  # noqa: E402
from wa_tg_bridge.telegram_api import TelegramBotAPI  # noqa: E402
from wa_tg_bridge.whatsapp_api import WhatsAppGateway  # noqa: E402

FORUM_CHAT_ID = -1001234567890

ENV_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "TELEGRAM_WEBHOOK_SECRET",
    "TELEGRAM_API_BASE",
    "TELEGRAM_UPDATE_MODE",
    "TELEGRAM_LOG_CHANNEL",
    "PUBLIC_BASE_URL",
    "WHATSAPP_GATEWAY_URL",
    "WHATSAPP_GATEWAY_TOKEN",
    "WHATSAPP_WEBHOOK_SECRET",
    "DATABASE_URL",
    "TEMP_DIR",
    "CONTACT_SYNC_INTERVAL",
    "TOPIC_VERIFY_INTERVAL",
    "MESSAGE_MAX_AGE",
    "FEATURE_STATUS_SYNC",
    "FEATURE_PROFILE_PIC_SYNC",
    "FEATURE_AUTO_UPDATE_CONTACT_NAMES",
    "FEATURE_AUTO_UPDATE_TOPIC_NAMES",
    "FEATURE_READ_RECEIPTS",
    "FEATURE_PRESENCE_UPDATES",
    "FEATURE_BI_DIRECTIONAL",
    "FEATURE_CALL_LOGS",
    "FEATURE_WELCOME_MESSAGES",
]


def _is_external(url) -> bool:
    return isinstance(url, str) and (
        "api.telegram.org" in url
        or "fail.org" in url
        or (
            url.startswith("http")
            and not ("testserver" in url or "localhost" in url or "127.0.0.1" in url)
        )
    )


@pytest.fixture(autouse=True)
def block_all_real_network_requests(monkeypatch):
    """
    SECURITY FIX: Block ALL real network requests during testing.

    CRITICAL: This prevents accidental real HTTP requests to api.telegram.org
    or any external service. All HTTP calls MUST go through mocks.

    This specifically blocks external HTTP calls while allowing local test client requests.
    """
    try:
        import httpx

        original_async_get = httpx.AsyncClient.get
        original_async_post = httpx.AsyncClient.post

        def smart_async_get(self, url, **kwargs):
            if _is_external(url):
                raise RuntimeError(f"🚨 SECURITY: Real HTTP request blocked! URL: {url}")
            return original_async_get(self, url, **kwargs)

        def smart_async_post(self, url, **kwargs):
            if _is_external(url):
                raise RuntimeError(f"🚨 SECURITY: Real HTTP request blocked! URL: {url}")
            return original_async_post(self, url, **kwargs)

        monkeypatch.setattr("httpx.AsyncClient.get", smart_async_get)
        monkeypatch.setattr("httpx.AsyncClient.post", smart_async_post)

    except ImportError:
        pass


def _disable_dotenv(monkeypatch, config_module) -> None:
    from pydantic_settings import SettingsConfigDict

    test_config = SettingsConfigDict(
        env_file=None,  # No .env file loading
        env_file_encoding="utf-8",
        extra="ignore",
    )
    monkeypatch.setattr(config_module.Settings, "model_config", test_config)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    """
    Clean and reset settings singleton for each test.

    SECURITY: This ensures no .env file values leak into tests and prevents
    ANY real HTTP requests to Telegram, the gateway or a real database.
    """
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.setenv("TELEGRAM_API_BASE", "https://fail.org")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123456:ABC-DEF_your_bot_token_here")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", str(FORUM_CHAT_ID))
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "supersecretpathsegment")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bridge.example.com")
    monkeypatch.setenv("WHATSAPP_GATEWAY_URL", "https://gateway.fail.org")
    monkeypatch.setenv("WHATSAPP_WEBHOOK_SECRET", "gatewaysecret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}")
    monkeypatch.setenv("TEMP_DIR", str(tmp_path / "temp"))

    import wa_tg_bridge.config as config_module

    _disable_dotenv(monkeypatch, config_module)
    config_module.settings = config_module.Settings()

    # Also reset any module-level constants that depend on settings
    import wa_tg_bridge.telegram_api as telegram_api_module

    monkeypatch.setattr(telegram_api_module, "TELEGRAM_API_BASE", "https://fail.org")


@pytest.fixture
def pure_defaults_only(monkeypatch):
    """
    Create completely clean environment for testing actual defaults.

    Used ONLY for testing that Settings() returns proper defaults when
    no environment variables are set.
    """
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import wa_tg_bridge.config as config_module

    _disable_dotenv(monkeypatch, config_module)
    config_module.settings = config_module.Settings()


@pytest.fixture
def bridge_settings():
    """The freshly built (isolated) settings singleton."""
    import wa_tg_bridge.config as config_module

    return config_module.settings


@pytest.fixture
def mock_client_response():
    """Create a mock HTTP response for testing."""
    mock_resp = MagicMock()
    mock_resp.raise_for_status = MagicMock()
    mock_resp.json = MagicMock(return_value={})
    mock_resp.content = b""
    mock_resp.status_code = 200
    mock_resp.text = ""
    return mock_resp


@pytest.fixture
def safe_mock_async_client():
    """
    Create a PROPERLY mocked AsyncClient for httpx.

    SECURITY: This ensures ALL HTTP calls are intercepted.
    """
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.get = AsyncMock()
    client.post = AsyncMock()
    return client


@pytest.fixture
def safe_httpx_client(safe_mock_async_client):
    """
    Mock httpx.AsyncClient with SECURITY-first approach.

    CRITICAL: Ensures ALL HTTP calls are intercepted and never hit real endpoints.
    """
    with patch("httpx.AsyncClient", return_value=safe_mock_async_client):
        yield safe_mock_async_client


# ---------------------------------------------------------------------------
# Bridge component doubles
# ---------------------------------------------------------------------------


def tg_sent(message_id: int = 100, thread_id=None) -> TgMessage:
    return TgMessage(
        message_id=message_id,
        chat=TgChat(id=FORUM_CHAT_ID, type="supergroup"),
        message_thread_id=thread_id,
    )


@pytest.fixture
def fake_telegram():
    """TelegramBotAPI double; every send succeeds."""
    api = MagicMock(spec=TelegramBotAPI)
    api.send_message.return_value = tg_sent(100)
    for name in (
        "send_photo",
        "send_video",
        "send_animation",
        "send_video_note",
        "send_audio",
        "send_voice",
        "send_document",
        "send_sticker",
        "send_location",
        "send_contact",
    ):
        getattr(api, name).return_value = tg_sent(101)
    api.create_forum_topic.return_value = TgForumTopic(message_thread_id=42, name="topic")
    api.edit_forum_topic.return_value = True
    api.send_chat_action.return_value = True
    api.set_message_reaction.return_value = True
    api.pin_chat_message.return_value = True
    api.set_my_commands.return_value = True
    api.get_file_direct_url.return_value = "https://fail.org/file/bot123/file.bin"
    api.download_file.return_value = b"telegram-bytes"
    api.get_updates.return_value = []
    return api


@pytest.fixture
def fake_whatsapp():
    """WhatsAppGateway double; sends are acknowledged with a key."""
    gateway = MagicMock(spec=WhatsAppGateway)
    gateway.send_message.return_value = WaSendResult(
        key=WaMessageKey(remote_jid="15551234567@s.whatsapp.net", from_me=True, id="SENT1")
    )
    gateway.me.return_value = {"id": "15550000000:1@s.whatsapp.net", "name": "Me"}
    gateway.download_content.return_value = b"whatsapp-bytes"
    gateway.group_metadata.return_value = WaGroupMetadata(
        id="120363000000000000@g.us", subject="Family", participants=[{"id": "a"}, {"id": "b"}]
    )
    gateway.profile_picture_url.return_value = None
    gateway.fetch_status.return_value = None
    gateway.contacts.return_value = []
    gateway.fetch_contacts.return_value = []
    gateway.chats.return_value = []
    return gateway


@pytest_asyncio.fixture
async def store(tmp_path):
    """A real MappingStore on a throwaway SQLite file."""
    mapping_store = MappingStore(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await mapping_store.connect()
    await mapping_store.load_all()
    yield mapping_store
    await mapping_store.close()


@pytest.fixture
def make_wa_message():
    """Factory for gateway-shaped WhatsApp messages."""

    def _make(
        jid="15551234567@s.whatsapp.net",
        text="hello",
        message=None,
        msg_id="MSG1",
        participant=None,
        from_me=False,
        timestamp=None,
        push_name=None,
    ) -> WaMessage:
        key = {"remoteJid": jid, "fromMe": from_me, "id": msg_id}
        if participant:
            key["participant"] = participant
        payload = {
            "key": key,
            "message": message if message is not None else {"conversation": text},
            "messageTimestamp": int(time.time()) if timestamp is None else timestamp,
        }
        if push_name:
            payload["pushName"] = push_name
        return WaMessage.model_validate(payload)

    return _make
