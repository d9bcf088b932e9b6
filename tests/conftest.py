from datetime import datetime, timezone
from unittest.mock import Mock
from uuid import uuid4

import fakeredis
import pytest

from app.models import Bot, Channel


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Route every Redis-backed counter to an in-memory server."""
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr("app.services.rate_limiter.get_redis", lambda: client)
    monkeypatch.setattr("app.services.channels.webhook.get_redis", lambda: client)
    return client


def _make_bot(**overrides) -> Bot:
    now = datetime.now(timezone.utc)
    fields = {
        "id": uuid4(),
        "user_id": uuid4(),
        "name": "Support Bot",
        "instructions": "You are the support assistant for Acme Outdoor.",
        "welcome_message": None,
        "is_active": True,
        "escalation_enabled": True,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Bot(**fields)


def _make_channel(bot: Bot | None = None, channel_type: str = "website", config: dict | None = None, **overrides) -> Channel:
    now = datetime.now(timezone.utc)
    bot = bot or _make_bot()
    fields = {
        "id": uuid4(),
        "bot_id": bot.id,
        "channel_type": channel_type,
        "is_active": True,
        "config": config or {},
        "embed_key": "embed-abc123" if channel_type == "website" else None,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    channel = Channel(**fields)
    channel.bot = bot
    return channel


@pytest.fixture
def bot():
    return _make_bot()


@pytest.fixture
def whatsapp_channel(bot):
    return _make_channel(
        bot,
        "whatsapp",
        {
            "connected": True,
            "access_token": "wa-token",
            "phone_number_id": "1098765",
            "business_account_id": "waba-1",
            "webhook_verify_token": "servio_wa_1234abcd",
        },
    )


@pytest.fixture
def instagram_channel(bot):
    return _make_channel(
        bot,
        "instagram",
        {
            "connected": True,
            "access_token": "page-token",
            "user_access_token": "user-token",
            "page_id": "page-1",
            "instagram_account_id": "ig-1",
            "webhook_verify_token": "servio_ig_1234abcd",
        },
    )


@pytest.fixture
def make_bot():
    return _make_bot


@pytest.fixture
def make_channel():
    return _make_channel
