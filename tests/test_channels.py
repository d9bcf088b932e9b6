from types import SimpleNamespace
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest

from app.errors import NotFoundError, UpstreamTransientError, ValidationError
from app.schemas.widget import ChatRequest
from app.services.channels import (
    InstagramAdapter,
    MetaAdapter,
    WebsiteAdapter,
    WhatsAppAdapter,
    get_adapter,
    process_webhook,
)
from app.services.meta_graph import MetaGraphError


def whatsapp_payload(*messages, phone_number_id="1098765"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": phone_number_id, "display_phone_number": "+1 555 0100"},
                            "contacts": [{"wa_id": "351911111111", "profile": {"name": "Ana"}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


def wa_text(message_id, body, sender="351911111111"):
    return {"id": message_id, "from": sender, "type": "text", "timestamp": "1700000000", "text": {"body": body}}


def instagram_payload(*events, entry_id="ig-1"):
    return {"object": "instagram", "entry": [{"id": entry_id, "time": 1700000000, "messaging": list(events)}]}


def ig_text(mid, text, sender="igsid-42", is_echo=False):
    message = {"mid": mid, "text": text}
    if is_echo:
        message["is_echo"] = True
    return {"sender": {"id": sender}, "recipient": {"id": "ig-1"}, "message": message}


class TestRegistry:
    def test_known_types(self):
        assert isinstance(get_adapter("website"), WebsiteAdapter)
        assert isinstance(get_adapter("whatsapp"), WhatsAppAdapter)
        assert isinstance(get_adapter("instagram"), InstagramAdapter)

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            get_adapter("telegram")

    def test_meta_base_is_abstract(self):
        with pytest.raises(TypeError):
            MetaAdapter()


class TestWhatsAppAdapter:
    def test_ingest_text_messages(self):
        payload = whatsapp_payload(
            wa_text("wamid.1", "Hi"),
            {"id": "wamid.2", "from": "351911111111", "type": "image"},
        )

        inbound = WhatsAppAdapter().ingest(payload)

        assert len(inbound) == 1
        assert inbound[0].account_id == "1098765"
        assert inbound[0].sender_id == "351911111111"
        assert inbound[0].sender_name == "Ana"
        assert inbound[0].message_id == "wamid.1"
        assert inbound[0].text == "Hi"

    def test_status_only_payload_has_no_messages(self):
        payload = whatsapp_payload()
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [{"id": "wamid.1", "status": "read"}]

        assert WhatsAppAdapter().ingest(payload) == []

    def test_wrong_object_ignored(self):
        payload = whatsapp_payload(wa_text("wamid.1", "Hi"))
        payload["object"] = "page"

        assert WhatsAppAdapter().ingest(payload) == []

    def test_malformed_payload_ignored(self):
        assert WhatsAppAdapter().ingest({"object": "whatsapp_business_account", "entry": "nope"}) == []

    def test_verify_with_known_token(self, db_session, whatsapp_channel):
        db_session.query().filter().all.return_value = [whatsapp_channel]

        assert WhatsAppAdapter().verify(db_session, "subscribe", "servio_wa_1234abcd", "12345") == "12345"

    def test_verify_rejects_unknown_token_and_mode(self, db_session, whatsapp_channel):
        db_session.query().filter().all.return_value = [whatsapp_channel]
        adapter = WhatsAppAdapter()

        assert adapter.verify(db_session, "subscribe", "wrong", "12345") is None
        assert adapter.verify(db_session, "unsubscribe", "servio_wa_1234abcd", "12345") is None

    def test_deliver_uses_phone_number_id(self, whatsapp_channel):
        graph = Mock()
        adapter = WhatsAppAdapter(graph_client=graph)

        assert adapter.deliver(whatsapp_channel, "351911111111", "Hello!") is True

        graph.send_message.assert_called_once_with(
            "1098765",
            "wa-token",
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": "351911111111",
                "type": "text",
                "text": {"body": "Hello!"},
            },
        )

    def test_deliver_failure_returns_false(self, whatsapp_channel):
        graph = Mock()
        graph.send_message.side_effect = MetaGraphError(400, "Invalid OAuth access token")

        assert WhatsAppAdapter(graph_client=graph).deliver(whatsapp_channel, "351911111111", "Hello!") is False

    def test_deliver_without_token(self, make_channel):
        channel = make_channel(channel_type="whatsapp", config={"phone_number_id": "1098765"})
        graph = Mock()

        assert WhatsAppAdapter(graph_client=graph).deliver(channel, "351911111111", "Hello!") is False
        graph.send_message.assert_not_called()

    def test_self_message_by_phone_number_id(self, whatsapp_channel):
        adapter = WhatsAppAdapter()
        own = adapter.ingest(whatsapp_payload(wa_text("wamid.5", "hello", sender="1098765")))[0]
        visitor = adapter.ingest(whatsapp_payload(wa_text("wamid.6", "hello")))[0]

        assert adapter.is_self_message(own, whatsapp_channel) is True
        assert adapter.is_self_message(visitor, whatsapp_channel) is False

    def test_self_message_by_display_number(self, make_channel):
        channel = make_channel(
            channel_type="whatsapp",
            config={"phone_number_id": "1098765", "display_phone_number": "+1 555 0100"},
        )
        adapter = WhatsAppAdapter()
        own = adapter.ingest(whatsapp_payload(wa_text("wamid.7", "hello", sender="15550100")))[0]

        assert adapter.is_self_message(own, channel) is True


class TestInstagramAdapter:
    def test_ingest_skips_echoes_and_non_text(self):
        payload = instagram_payload(
            ig_text("mid.1", "Do you ship to Spain?"),
            ig_text("mid.2", "Yes we do", sender="ig-1", is_echo=True),
            {"sender": {"id": "igsid-42"}, "recipient": {"id": "ig-1"}, "read": {"mid": "mid.1"}},
        )

        inbound = InstagramAdapter().ingest(payload)

        assert [m.message_id for m in inbound] == ["mid.1"]
        assert inbound[0].account_id == "ig-1"
        assert inbound[0].sender_id == "igsid-42"

    def test_self_message(self, instagram_channel):
        adapter = InstagramAdapter()
        own = adapter.ingest(instagram_payload(ig_text("mid.3", "hello", sender="page-1")))[0]
        visitor = adapter.ingest(instagram_payload(ig_text("mid.4", "hello")))[0]

        assert adapter.is_self_message(own, instagram_channel) is True
        assert adapter.is_self_message(visitor, instagram_channel) is False

    def test_deliver_sends_from_page(self, instagram_channel):
        graph = Mock()

        InstagramAdapter(graph_client=graph).deliver(instagram_channel, "igsid-42", "Yes!")

        graph.send_message.assert_called_once_with(
            "page-1", "page-token", {"recipient": {"id": "igsid-42"}, "message": {"text": "Yes!"}}
        )


class TestWebsiteAdapter:
    @patch("app.services.channels.website.generate_reply")
    @patch("app.services.channels.website.get_conversation_for_bot", return_value=None)
    @patch("app.services.channels.website.resolve_by_embed_key")
    def test_stale_conversation_falls_back(self, mock_resolve, mock_get_conv, mock_generate, db_session, bot, make_channel):
        channel = make_channel(bot)
        mock_resolve.return_value = (bot, channel)
        mock_generate.return_value = SimpleNamespace(reply_text="Hi", conversation_id=uuid4(), escalated=False)
        stale_id = str(uuid4())

        WebsiteAdapter().handle_turn(
            db_session,
            ChatRequest(embed_key="embed-abc123", message="Hello", visitor_id="v-1", conversation_id=stale_id),
        )

        mock_get_conv.assert_called_once_with(db_session, stale_id, bot.id, "v-1")
        assert mock_generate.call_args.kwargs["conversation"] is None


@pytest.fixture
def wired(bot, whatsapp_channel):
    """WhatsApp adapter whose routing and response engine are stubbed."""
    graph = Mock()
    adapter = WhatsAppAdapter(graph_client=graph)
    replies = []

    def fake_generate(db, bot_, channel_type, visitor_id, text, **kwargs):
        replies.append(text)
        return SimpleNamespace(reply_text=f"re: {text}", conversation_id=uuid4(), escalated=False)

    with patch("app.services.channels.meta.resolve_by_provider_account", return_value=(bot, whatsapp_channel)), \
            patch("app.services.channels.webhook.generate_reply", side_effect=fake_generate) as generate:
        yield SimpleNamespace(adapter=adapter, graph=graph, replies=replies, generate=generate)


class TestProcessWebhook:
    def test_messages_processed_in_order(self, db_session, wired):
        payload = whatsapp_payload(wa_text("wamid.1", "first"), wa_text("wamid.2", "second"))

        result = process_webhook(db_session, wired.adapter, payload)

        assert wired.replies == ["first", "second"]
        assert result.processed == 2
        assert result.delivered == 2
        assert db_session.commit.call_count == 2
        sent = [c.args[2]["text"]["body"] for c in wired.graph.send_message.call_args_list]
        assert sent == ["re: first", "re: second"]

    def test_duplicate_delivery_skipped(self, db_session, wired):
        payload = whatsapp_payload(wa_text("wamid.1", "first"))

        process_webhook(db_session, wired.adapter, payload)
        result = process_webhook(db_session, wired.adapter, payload)

        assert result.skipped == 1
        assert result.processed == 0
        assert wired.replies == ["first"]

    def test_unknown_account_skipped(self, db_session, wired):
        with patch("app.services.channels.meta.resolve_by_provider_account", side_effect=NotFoundError("nope")):
            result = process_webhook(db_session, wired.adapter, whatsapp_payload(wa_text("wamid.9", "hi")))

        assert result.skipped == 1
        wired.generate.assert_not_called()

    def test_failure_rolls_back_and_releases_claim(self, db_session, wired, fake_redis):
        error = UpstreamTransientError("Failed to generate response")
        wired.generate.side_effect = [error, SimpleNamespace(reply_text="ok", conversation_id=uuid4(), escalated=False)]
        payload = whatsapp_payload(wa_text("wamid.1", "first"), wa_text("wamid.2", "second"))

        result = process_webhook(db_session, wired.adapter, payload)

        assert result.failed == 1
        assert result.processed == 1
        assert result.first_error is error
        db_session.rollback.assert_called_once()
        assert fake_redis.get("servio:dedup:whatsapp:wamid.1") is None
        assert fake_redis.get("servio:dedup:whatsapp:wamid.2") == "1"

    def test_delivery_failure_still_counts_as_processed(self, db_session, wired):
        wired.graph.send_message.side_effect = MetaGraphError(400, "bad token")

        result = process_webhook(db_session, wired.adapter, whatsapp_payload(wa_text("wamid.1", "first")))

        assert result.processed == 1
        assert result.delivered == 0
        assert result.failed == 0

    def test_dedup_store_unavailable_processes_anyway(self, db_session, wired):
        payload = whatsapp_payload(wa_text("wamid.1", "first"))

        with patch("app.services.channels.webhook.get_redis", side_effect=ValueError("Redis URL must specify a scheme")):
            result = process_webhook(db_session, wired.adapter, payload)

        assert result.processed == 1
        assert wired.replies == ["first"]
