import logging

from apps.api.core.config import Settings
from apps.api.core.database import to_async_dsn
from apps.api.core.logging import _parse_headers, configure_logging


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("SUPPORTDESK_DUPLICATE_ORDER_WINDOW_SECONDS", "60")
    monkeypatch.setenv("SUPPORTDESK_CHAT_BASE_URL", "https://chat.test")

    settings = Settings(_env_file=None)

    assert settings.duplicate_order_window_seconds == 60
    assert settings.chat_base_url == "https://chat.test"
    assert settings.crm_webhook_url is None


def test_async_dsn_upgrades_drivers():
    assert to_async_dsn("postgresql://u:p@db/desk") == "postgresql+asyncpg://u:p@db/desk"
    assert to_async_dsn("postgres://u:p@db/desk") == "postgresql+asyncpg://u:p@db/desk"
    assert to_async_dsn("sqlite:///desk.db") == "sqlite+aiosqlite:///desk.db"
    assert to_async_dsn("postgresql+asyncpg://db/desk") == "postgresql+asyncpg://db/desk"


def test_otlp_header_parsing_skips_malformed_items():
    assert _parse_headers("api-key=abc, x-team = desk,broken,=value") == {"api-key": "abc", "x-team": "desk"}
    assert _parse_headers(None) == {}


def test_configure_logging_quiets_chatty_libraries():
    logger = configure_logging(Settings(_env_file=None, log_level="debug"))

    assert logger.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
