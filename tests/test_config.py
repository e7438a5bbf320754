# == tests/test_config.py ==
import pytest

from wa_tg_bridge.config import FEATURE_FLAGS, Settings


def test_settings_defaults_ok(pure_defaults_only):
    """
    Ensure Settings can be instantiated with no env and has sane defaults.
    """
    s = Settings()
    assert s.telegram_bot_token is None
    assert s.telegram_chat_id is None
    assert s.telegram_update_mode == "webhook"
    assert s.whatsapp_gateway_url == "http://127.0.0.1:3000"
    assert s.database_url.startswith("sqlite+aiosqlite://")
    assert s.message_max_age == 60.0
    assert s.topic_verify_interval == 300.0
    # every feature starts enabled
    assert all(s.feature(name) for name in FEATURE_FLAGS)
    assert s.feature_welcome_messages is True


def test_settings_env_aliases(monkeypatch):
    """
    Ensure environment aliases are wired correctly.
    """
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "-100555")
    monkeypatch.setenv("TELEGRAM_UPDATE_MODE", "Polling")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bridge.example.com")
    monkeypatch.setenv("WHATSAPP_GATEWAY_URL", "http://gateway:3000")
    monkeypatch.setenv("WHATSAPP_GATEWAY_TOKEN", "tok")
    monkeypatch.setenv("MESSAGE_MAX_AGE", "30")
    monkeypatch.setenv("FEATURE_CALL_LOGS", "false")

    s = Settings()
    assert s.telegram_bot_token == "123:abc"
    assert s.telegram_chat_id == -100555
    assert s.telegram_update_mode == "polling"
    assert str(s.public_base_url) == "https://bridge.example.com/"
    assert s.whatsapp_gateway_url == "http://gateway:3000"
    assert s.whatsapp_gateway_token == "tok"
    assert s.message_max_age == 30.0
    assert s.feature("callLogs") is False


def test_invalid_update_mode_rejected(monkeypatch):
    monkeypatch.setenv("TELEGRAM_UPDATE_MODE", "carrier-pigeon")
    with pytest.raises(ValueError):
        Settings()


def test_set_feature_flips_live_settings():
    s = Settings()
    s.set_feature("profilePicSync", False)
    assert s.feature("profilePicSync") is False
    assert s.feature_profile_pic_sync is False

    with pytest.raises(KeyError):
        s.set_feature("noSuchFeature", True)


def test_settings_loads_from_dotenv(tmp_path, monkeypatch):
    """
    Ensure .env file is honored by pydantic-settings.
    """
    for key in ["TELEGRAM_CHAT_ID", "WHATSAPP_GATEWAY_URL", "FEATURE_STATUS_SYNC"]:
        monkeypatch.delenv(key, raising=False)

    env_file = tmp_path / ".env"
    env_file.write_text(
        "TELEGRAM_CHAT_ID=-100777\n"
        'WHATSAPP_GATEWAY_URL="http://dot-env.example:3000"\n'
        "FEATURE_STATUS_SYNC=false\n"
    )
    monkeypatch.chdir(tmp_path)

    from pydantic_settings import SettingsConfigDict

    class TestSettings(Settings):
        model_config = SettingsConfigDict(
            env_file=".env",
            env_file_encoding="utf-8",
            extra="ignore",
        )

    s = TestSettings()
    assert s.telegram_chat_id == -100777
    assert s.whatsapp_gateway_url == "http://dot-env.example:3000"
    assert s.feature("statusSync") is False
