from unittest.mock import MagicMock, Mock, patch

import httpx

from app.services.alert_service import (
    alert_critical,
    alert_error,
    alert_warning,
    format_alert,
    send_alert,
)


class TestSendAlert:
    @patch("app.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("app.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        result = send_alert("ERROR", "Test message")
        assert result is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)

        result = send_alert("CRITICAL", "AI gateway credits exhausted", {"bot_id": "b-1"})

        assert result is True
        url = mock_client.post.call_args[0][0]
        json_data = mock_client.post.call_args[1]["json"]
        assert "api.telegram.org" in url
        assert json_data["chat_id"] == "test-chat"
        assert "AI gateway credits exhausted" in json_data["text"]
        assert "bot_id: b-1" in json_data["text"]

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_returns_false_on_telegram_error(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=400)

        assert send_alert("ERROR", "Test message") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_returns_false_on_network_error(self, mock_client_class):
        mock_client_class.return_value.__enter__.side_effect = httpx.ConnectError("Network error")

        assert send_alert("ERROR", "Test message") is False


class TestFormatAlert:
    def test_level_prefix(self):
        assert format_alert("CRITICAL", "Boom").startswith("[CRITICAL] Servio: Boom")

    def test_unknown_level(self):
        assert format_alert("DEBUG", "x").startswith("[alert]")


class TestAlertShortcuts:
    @patch("app.services.alert_service.send_alert")
    def test_alert_error_calls_send_alert_with_error_level(self, mock_send):
        mock_send.return_value = True

        result = alert_error("Test error", {"key": "value"})

        mock_send.assert_called_once_with("ERROR", "Test error", {"key": "value"})
        assert result is True

    @patch("app.services.alert_service.send_alert")
    def test_alert_critical_calls_send_alert_with_critical_level(self, mock_send):
        alert_critical("Critical issue")
        mock_send.assert_called_once_with("CRITICAL", "Critical issue", None)

    @patch("app.services.alert_service.send_alert")
    def test_alert_warning_calls_send_alert_with_warning_level(self, mock_send):
        alert_warning("Warning message")
        mock_send.assert_called_once_with("WARNING", "Warning message", None)
