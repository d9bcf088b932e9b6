"""Meta OAuth lifecycle for WhatsApp and Instagram channels.

A channel moves disconnected -> pending (state issued) -> connected, stays
connected while the background sweep refreshes its token, and goes back to
disconnected when the owner disconnects it. The row and its embed key survive
every transition.
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ForbiddenError, OAuthStateError, ServiceError, ValidationError
from app.logging_config import get_logger
from app.models import Bot, Channel
from app.models.channel import MESSAGING_CHANNEL_TYPES
from app.schemas.channel_config import (
    InstagramConfig,
    WhatsAppConfig,
    disconnected_config,
    parse_channel_config,
)
from app.services.alert_service import alert_error
from app.services.ids import to_uuid
from app.services.meta_graph import MetaGraphClient, MetaGraphError
from app.services.oauth_state import decode_state, encode_state

logger = get_logger("oauth_service")

OAUTH_SCOPES = {
    "instagram": [
        "instagram_basic",
        "instagram_manage_messages",
        "pages_show_list",
        "pages_messaging",
        "pages_read_engagement",
    ],
    "whatsapp": [
        "whatsapp_business_management",
        "whatsapp_business_messaging",
        "business_management",
    ],
}
VERIFY_TOKEN_PREFIX = {"instagram": "servio_ig_", "whatsapp": "servio_wa_"}

STATE_TTL = timedelta(minutes=10)
REFRESH_WINDOW = timedelta(days=7)
DEFAULT_TOKEN_TTL_SECONDS = 5184000  # 60 days


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _callback_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/oauth/meta/callback"


def _dashboard_url(**params) -> str:
    return f"{settings.frontend_url.rstrip('/')}/dashboard?{urlencode(params)}"


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_owned_channel(db: Session, user_id, channel_id) -> Channel:
    """Channel by id, only if its bot belongs to the caller. Same error either way."""
    channel_uuid = to_uuid(channel_id)
    user_uuid = to_uuid(user_id)
    channel = None
    if channel_uuid and user_uuid:
        channel = (
            db.query(Channel)
            .join(Bot, Channel.bot_id == Bot.id)
            .filter(Channel.id == channel_uuid, Bot.user_id == user_uuid)
            .first()
        )
    if not channel:
        raise ForbiddenError("Channel not found or access denied")
    return channel


def _require_meta_app():
    if not settings.meta_app_id or not settings.meta_app_secret:
        logger.error("META_APP_ID / META_APP_SECRET not configured")
        alert_error("Meta OAuth attempted without app credentials")
        raise ServiceError("Meta integration is not configured")


def start_meta_oauth(db: Session, user_id, channel_id, channel_type: str) -> str:
    """Issue a state for the channel and return the provider authorization URL."""
    if channel_type not in OAUTH_SCOPES:
        raise ValidationError(f"OAuth is not supported for channel type: {channel_type}")

    channel = get_owned_channel(db, user_id, channel_id)
    if channel.channel_type != channel_type:
        raise ValidationError("Channel type does not match")
    _require_meta_app()

    state = encode_state(
        {"channel_id": str(channel.id), "channel_type": channel_type, "user_id": str(user_id)},
        expires_in=STATE_TTL,
    )
    # Overwrites any earlier pending state for this channel.
    channel.oauth_state = state
    channel.oauth_expires_at = _utcnow() + STATE_TTL
    channel.updated_at = _utcnow()
    db.flush()

    query = urlencode(
        {
            "client_id": settings.meta_app_id,
            "redirect_uri": _callback_url(),
            "state": state,
            "scope": ",".join(OAUTH_SCOPES[channel_type]),
            "response_type": "code",
        }
    )
    logger.info("Meta OAuth started", extra={"context": {"channel_id": str(channel.id), "channel_type": channel_type}})
    return f"https://www.facebook.com/{settings.meta_graph_version}/dialog/oauth?{query}"


def _load_pending_channel(db: Session, state: str) -> Channel:
    payload = decode_state(state)
    channel_uuid = to_uuid(payload.get("channel_id"))
    channel = db.query(Channel).filter(Channel.id == channel_uuid).first() if channel_uuid else None
    if not channel:
        raise OAuthStateError("channel_not_found")
    if not channel.oauth_state or not hmac.compare_digest(channel.oauth_state, state):
        raise OAuthStateError("state_mismatch")
    expires_at = _as_aware(channel.oauth_expires_at)
    if expires_at is None or expires_at < _utcnow():
        raise OAuthStateError("state_expired")
    if payload.get("channel_type") != channel.channel_type:
        raise OAuthStateError("state_mismatch")
    return channel


def _exchange_tokens(graph: MetaGraphClient, code: str) -> tuple[str, int]:
    """Code -> short-lived token -> long-lived token. Falls back to the short-lived one."""
    try:
        short_lived = graph.exchange_code(code, _callback_url()).get("access_token")
    except (MetaGraphError, httpx.HTTPError) as e:
        logger.error("Meta code exchange failed", extra={"context": {"error": str(e)}})
        raise OAuthStateError("token_exchange_failed")
    if not short_lived:
        raise OAuthStateError("token_exchange_failed")

    try:
        long_lived = graph.exchange_long_lived(short_lived)
    except (MetaGraphError, httpx.HTTPError) as e:
        logger.warning("Long-lived token exchange failed", extra={"context": {"error": str(e)}})
        long_lived = {}

    token = long_lived.get("access_token") or short_lived
    expires_in = int(long_lived.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
    return token, expires_in


def _verify_token_for(channel: Channel) -> str:
    existing = (channel.config or {}).get("webhook_verify_token")
    if existing:
        return existing
    return VERIFY_TOKEN_PREFIX[channel.channel_type] + str(channel.id)[:8]


def _connect_instagram(graph: MetaGraphClient, channel: Channel, user_token: str, expires_at: datetime) -> InstagramConfig:
    try:
        pages = graph.get_pages(user_token)
    except (MetaGraphError, httpx.HTTPError) as e:
        logger.error("Failed to list pages", extra={"context": {"channel_id": str(channel.id), "error": str(e)}})
        raise OAuthStateError("account_not_found")

    page = next((p for p in pages if p.get("instagram_business_account")), None)
    if not page:
        raise OAuthStateError("account_not_found")

    try:
        page_token = graph.get_page_token(page["id"], user_token)
    except (MetaGraphError, httpx.HTTPError) as e:
        logger.error("Failed to fetch page token", extra={"context": {"page_id": page["id"], "error": str(e)}})
        page_token = None
    if not page_token:
        raise OAuthStateError("token_exchange_failed")

    ig_account = page["instagram_business_account"]
    return InstagramConfig(
        connected=True,
        page_id=page["id"],
        page_name=page.get("name"),
        instagram_account_id=ig_account.get("id"),
        instagram_username=ig_account.get("username"),
        access_token=page_token,
        user_access_token=user_token,
        webhook_verify_token=_verify_token_for(channel),
        webhook_subscribed=graph.subscribe_page(page["id"], page_token),
        token_expires_at=expires_at,
    )


def _first_whatsapp_number(businesses: List[dict]) -> Optional[tuple[dict, dict]]:
    for business in businesses:
        for waba in (business.get("owned_whatsapp_business_accounts") or {}).get("data") or []:
            numbers = (waba.get("phone_numbers") or {}).get("data") or []
            if numbers:
                return waba, numbers[0]
    return None


def _connect_whatsapp(graph: MetaGraphClient, channel: Channel, user_token: str, expires_at: datetime) -> WhatsAppConfig:
    try:
        businesses = graph.get_whatsapp_accounts(user_token)
    except (MetaGraphError, httpx.HTTPError) as e:
        logger.error("Failed to list businesses", extra={"context": {"channel_id": str(channel.id), "error": str(e)}})
        raise OAuthStateError("account_not_found")

    found = _first_whatsapp_number(businesses)
    if not found:
        raise OAuthStateError("account_not_found")
    waba, phone_number = found
    graph.subscribe_waba(waba["id"], user_token)

    return WhatsAppConfig(
        connected=True,
        business_account_id=waba["id"],
        business_name=waba.get("name"),
        phone_number_id=phone_number["id"],
        display_phone_number=phone_number.get("display_phone_number"),
        verified_name=phone_number.get("verified_name"),
        access_token=user_token,
        webhook_verify_token=_verify_token_for(channel),
        token_expires_at=expires_at,
    )


def complete_meta_oauth(
    db: Session,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str] = None,
    error_reason: Optional[str] = None,
    graph: Optional[MetaGraphClient] = None,
) -> str:
    """Finish the provider redirect and return the dashboard URL to send the user to."""
    if error:
        logger.warning("Meta OAuth denied", extra={"context": {"error": error, "error_reason": error_reason}})
        return _dashboard_url(oauth="error", reason=error_reason or error)
    if not code or not state:
        return _dashboard_url(oauth="error", reason="missing_params")

    graph = graph or MetaGraphClient()
    try:
        channel = _load_pending_channel(db, state)
        user_token, expires_in = _exchange_tokens(graph, code)
        now = _utcnow()
        expires_at = now + timedelta(seconds=expires_in)

        if channel.channel_type == "instagram":
            config = _connect_instagram(graph, channel, user_token, expires_at)
        else:
            config = _connect_whatsapp(graph, channel, user_token, expires_at)
    except OAuthStateError as e:
        logger.warning("Meta OAuth callback rejected", extra={"context": {"reason": e.reason}})
        return _dashboard_url(oauth="error", reason=e.reason)
    except Exception:
        logger.exception("Meta OAuth callback failed")
        return _dashboard_url(oauth="error", reason="unknown")

    try:
        channel.set_provider_config(config)
        channel.is_active = True
        channel.oauth_state = None
        channel.oauth_expires_at = None
        channel.token_expires_at = expires_at
        channel.token_refreshed_at = now
        channel.updated_at = now
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to save channel config", extra={"context": {"channel_id": str(channel.id), "error": str(e)}})
        return _dashboard_url(oauth="error", reason="save_failed")

    logger.info(
        "Meta channel connected",
        extra={"context": {"channel_id": str(channel.id), "channel_type": channel.channel_type}},
    )
    return _dashboard_url(oauth="success", channel=channel.channel_type)


def disconnect_channel(db: Session, user_id, channel_id) -> Channel:
    channel = get_owned_channel(db, user_id, channel_id)
    # Stored config may already violate the connected/token rule; parse it as disconnected.
    raw = {**(channel.config or {}), "connected": False}
    channel.set_provider_config(disconnected_config(parse_channel_config(channel.channel_type, raw)))
    channel.is_active = False
    channel.oauth_state = None
    channel.oauth_expires_at = None
    channel.token_expires_at = None
    channel.updated_at = _utcnow()
    db.flush()
    logger.info("Channel disconnected", extra={"context": {"channel_id": str(channel.id)}})
    return channel


def _refresh_channel(graph: MetaGraphClient, channel: Channel, now: datetime) -> dict:
    config = channel.provider_config
    result = {"channel_id": str(channel.id), "channel_type": channel.channel_type}

    if isinstance(config, InstagramConfig):
        if not config.page_id:
            return {**result, "status": "skipped", "error": "Missing page id"}
        refreshed = graph.exchange_long_lived(config.user_access_token or config.access_token)
        user_token = refreshed.get("access_token")
        new_token = graph.get_page_token(config.page_id, user_token) if user_token else None
        updates = {"user_access_token": user_token}
    else:
        refreshed = graph.exchange_long_lived(config.access_token)
        new_token = refreshed.get("access_token")
        updates = {}

    if not new_token:
        return {**result, "status": "skipped", "error": "Could not refresh token"}

    expires_at = now + timedelta(seconds=int(refreshed.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS))
    channel.set_provider_config(
        config.model_copy(update={**updates, "access_token": new_token, "token_expires_at": expires_at})
    )
    channel.token_expires_at = expires_at
    channel.token_refreshed_at = now
    channel.updated_at = now
    return {**result, "status": "refreshed", "token_expires_at": expires_at.isoformat()}


def refresh_expiring_tokens(
    db: Session,
    now: Optional[datetime] = None,
    graph: Optional[MetaGraphClient] = None,
) -> List[dict]:
    """Refresh connected channels whose token expires within the refresh window.

    Channels are handled one at a time and committed individually; one
    failure never stops the sweep. A channel that cannot be refreshed stays
    connected with its old token.
    """
    now = now or _utcnow()
    graph = graph or MetaGraphClient()
    channels = (
        db.query(Channel)
        .filter(
            Channel.channel_type.in_(MESSAGING_CHANNEL_TYPES),
            Channel.is_active.is_(True),
            or_(Channel.token_expires_at.is_(None), Channel.token_expires_at < now + REFRESH_WINDOW),
        )
        .all()
    )
    logger.info(f"Found {len(channels)} channels to check for token refresh")

    results = []
    for channel in channels:
        if not channel.is_connected:
            continue
        try:
            result = _refresh_channel(graph, channel, now)
            db.commit()
        except (MetaGraphError, httpx.HTTPError) as e:
            db.rollback()
            result = {"channel_id": str(channel.id), "channel_type": channel.channel_type, "status": "skipped", "error": str(e)}
        except Exception as e:
            db.rollback()
            logger.error(
                "Token refresh failed",
                extra={"context": {"channel_id": str(channel.id), "error": str(e)}},
                exc_info=True,
            )
            result = {"channel_id": str(channel.id), "channel_type": channel.channel_type, "status": "error", "error": str(e)}

        logger.info("Token refresh result", extra={"context": result})
        results.append(result)

    return results
