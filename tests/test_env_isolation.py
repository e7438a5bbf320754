"""
Test environment isolation is working.
"""

from wa_tg_bridge import config
from wa_tg_bridge.config import Settings


def test_clean_environment_fixture_works(pure_defaults_only):
    """Test that our fixture properly isolates environment."""
    settings = Settings()

    # defaults, not values from a developer's .env
    assert settings.telegram_bot_token is None
    assert settings.telegram_chat_id is None
    assert settings.whatsapp_gateway_token is None


def test_clean_settings_points_away_from_real_services():
    """Every outbound base URL used by tests must be unroutable."""
    assert config.settings.telegram_api_base == "https://fail.org"
    assert "fail.org" in config.settings.whatsapp_gateway_url
