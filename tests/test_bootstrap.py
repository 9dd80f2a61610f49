from unittest.mock import AsyncMock

import pytest

from helpdesk.bootstrap import build_fanout, connect, to_asyncpg_dsn
from helpdesk.core.config import Settings
from helpdesk.core.logging import init_tracer, parse_headers


@pytest.mark.parametrize(
    ("dsn", "expected"),
    [
        ("postgresql://u:p@db/helpdesk", "postgresql+asyncpg://u:p@db/helpdesk"),
        ("postgres://u:p@db/helpdesk", "postgresql+asyncpg://u:p@db/helpdesk"),
        ("postgresql+asyncpg://u:p@db/helpdesk", "postgresql+asyncpg://u:p@db/helpdesk"),
        ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
    ],
)
def test_to_asyncpg_dsn(dsn, expected):
    assert to_asyncpg_dsn(dsn) == expected


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "from-env")
    monkeypatch.setenv("SLACK_CATEGORY_CHANNELS", '{"Hostel": "C-hostel"}')
    monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", "3")

    settings = Settings()

    assert settings.jwt_secret == "from-env"
    assert settings.slack_category_channels == {"Hostel": "C-hostel"}
    assert settings.outbox_max_attempts == 3


def test_parse_headers_skips_malformed_pairs():
    assert parse_headers("Authorization=Bearer x, bad, =y,team = core") == {
        "Authorization": "Bearer x",
        "team": "core",
    }
    assert parse_headers(None) == {}


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(otel_enabled=False)) is None


@pytest.mark.asyncio
async def test_build_fanout_only_creates_enabled_channels(registry):
    disabled = build_fanout(Settings(), registry)
    assert disabled._chat is None and disabled._email is None

    enabled = build_fanout(Settings(slack_enabled=True, email_enabled=True, slack_bot_token="xoxb"), registry)
    assert enabled._chat is not None and enabled._chat.can_post
    assert enabled._email is not None
    await enabled.aclose()


@pytest.mark.asyncio
async def test_connect_disposes_engine_when_schema_setup_fails(monkeypatch):
    engine = AsyncMock()
    monkeypatch.setattr("helpdesk.bootstrap.create_async_engine", lambda *args, **kwargs: engine)
    monkeypatch.setattr(
        "helpdesk.bootstrap.TicketService.ensure_schema", AsyncMock(side_effect=OSError("connection refused"))
    )

    with pytest.raises(OSError):
        await connect(Settings(postgres_dsn="postgresql://u:p@db/helpdesk"))

    engine.dispose.assert_awaited_once()
