"""Operator alerts delivered to a Telegram chat.

Used for conditions a person has to fix (exhausted AI credits, missing provider
credentials). Sending is best-effort: failures are logged and reported as False.
"""

import os
from typing import Optional

import httpx

from app.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")

LEVEL_PREFIX = {"INFO": "[info]", "WARNING": "[warning]", "ERROR": "[error]", "CRITICAL": "[CRITICAL]"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_PREFIX.get(level, '[alert]')} Servio: {message}"
    if context:
        details = "\n".join(f"{key}: {value}" for key, value in context.items())
        text += f"\n\n{details}"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context)},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
