from unittest.mock import Mock

import pytest

from app.errors import NotFoundError
from app.services.channel_resolver import (
    find_channel_by_verify_token,
    resolve_by_embed_key,
    resolve_by_provider_account,
)


class TestResolveByEmbedKey:
    def test_returns_bot_and_channel(self, bot, make_channel):
        channel = make_channel(bot)
        db = Mock()
        db.query().filter().first.return_value = channel

        assert resolve_by_embed_key(db, "embed-abc123") == (bot, channel)

    def test_unknown_key(self):
        db = Mock()
        db.query().filter().first.return_value = None

        with pytest.raises(NotFoundError, match="Bot not found or inactive"):
            resolve_by_embed_key(db, "nope")

    def test_inactive_channel_looks_missing(self, bot, make_channel):
        db = Mock()
        db.query().filter().first.return_value = make_channel(bot, is_active=False)

        with pytest.raises(NotFoundError, match="Bot not found or inactive"):
            resolve_by_embed_key(db, "embed-abc123")

    def test_inactive_bot_looks_missing(self, make_bot, make_channel):
        db = Mock()
        db.query().filter().first.return_value = make_channel(make_bot(is_active=False))

        with pytest.raises(NotFoundError, match="Bot not found or inactive"):
            resolve_by_embed_key(db, "embed-abc123")

    def test_empty_key_does_not_query(self):
        db = Mock()
        with pytest.raises(NotFoundError):
            resolve_by_embed_key(db, "")
        db.query.assert_not_called()


class TestResolveByProviderAccount:
    def test_whatsapp_matches_phone_number_id(self, bot, whatsapp_channel, make_bot, make_channel):
        other = make_channel(make_bot(), "whatsapp", {"phone_number_id": "555"})
        db = Mock()
        db.query().filter().all.return_value = [other, whatsapp_channel]

        assert resolve_by_provider_account(db, "whatsapp", "1098765") == (bot, whatsapp_channel)

    def test_instagram_matches_page_or_account_id(self, bot, instagram_channel):
        db = Mock()
        db.query().filter().all.return_value = [instagram_channel]

        assert resolve_by_provider_account(db, "instagram", "page-1")[1] is instagram_channel
        assert resolve_by_provider_account(db, "instagram", "ig-1")[1] is instagram_channel

    def test_no_match(self, whatsapp_channel):
        db = Mock()
        db.query().filter().all.return_value = [whatsapp_channel]

        with pytest.raises(NotFoundError):
            resolve_by_provider_account(db, "whatsapp", "999")

    def test_skips_channel_with_invalid_config(self, bot, whatsapp_channel, make_channel):
        broken = make_channel(bot, "whatsapp", {"connected": True, "phone_number_id": "1098765"})
        db = Mock()
        db.query().filter().all.return_value = [broken, whatsapp_channel]

        assert resolve_by_provider_account(db, "whatsapp", "1098765")[1] is whatsapp_channel


class TestFindChannelByVerifyToken:
    def test_matches_token(self, whatsapp_channel):
        db = Mock()
        db.query().filter().all.return_value = [whatsapp_channel]

        assert find_channel_by_verify_token(db, "whatsapp", "servio_wa_1234abcd") is whatsapp_channel

    def test_wrong_token(self, whatsapp_channel):
        db = Mock()
        db.query().filter().all.return_value = [whatsapp_channel]

        assert find_channel_by_verify_token(db, "whatsapp", "servio_wa_other") is None

    def test_empty_token(self):
        assert find_channel_by_verify_token(Mock(), "whatsapp", "") is None
