"""Commerce intent detection and store lookups for the system prompt.

A visitor message is classified as an order question, a product question or
neither. When the bot has an active store integration the matching order or
products are fetched and rendered as a plain-text block the model can quote.
Lookups never fail a turn: any store error simply yields no block.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ForbiddenError, NotFoundError, OAuthStateError, ServiceError, ValidationError
from app.logging_config import get_logger
from app.models import Bot, CommerceIntegration
from app.services.alert_service import alert_error
from app.services.ids import to_uuid
from app.services.oauth_state import decode_state, encode_state

logger = get_logger("commerce_service")

INTENT_ORDER = "order"
INTENT_PRODUCT = "product"
INTENT_NONE = "none"

ORDER_NUMBER_PATTERNS = (
    re.compile(r"#\s*(\d+)"),
    re.compile(r"\border\s*(?:number|no\.?|num)?\s*:?\s*(\d+)", re.IGNORECASE),
)
ORDER_KEYWORDS = re.compile(
    r"\b(track|tracking|shipping|shipped|shipment|delivery|delivered|deliver|order status|my order|where is my)\b",
    re.IGNORECASE,
)
PRODUCT_KEYWORDS = re.compile(
    r"\b(stock|available|availability|price|prices|cost|costs|how much|sold out)\b",
    re.IGNORECASE,
)

STOPWORDS = {
    "about", "also", "anything", "available", "availability", "cost", "costs", "could", "does", "from",
    "have", "much", "please", "price", "prices", "sell", "still", "stock", "that", "them", "there",
    "they", "this", "want", "what", "when", "where", "which", "will", "with", "would", "your",
}
MAX_QUERY_WORDS = 3
PRODUCT_SEARCH_LIMIT = 5

SHOPIFY_SCOPES = [
    "read_orders",
    "read_customers",
    "read_products",
    "read_inventory",
    "read_fulfillments",
    "read_shipping",
]
SHOPIFY_STATE_TTL = timedelta(minutes=5)
SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")


@dataclass
class CommerceIntent:
    type: str
    query: str = ""


@dataclass
class CommerceContext:
    intent: CommerceIntent
    context_text: str = ""

    @property
    def used(self) -> bool:
        return bool(self.context_text)


class ShopifyAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Shopify API error: {status_code} - {message}")


def _extract_product_query(message: str) -> str:
    words = re.findall(r"[a-z0-9]+", message.lower())
    content_words = [w for w in words if len(w) > 3 and w not in STOPWORDS]
    return " ".join(content_words[:MAX_QUERY_WORDS])


def detect_intent(message: str) -> CommerceIntent:
    text = message or ""

    for pattern in ORDER_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return CommerceIntent(type=INTENT_ORDER, query=f"#{match.group(1)}")

    if ORDER_KEYWORDS.search(text):
        return CommerceIntent(type=INTENT_ORDER, query="")

    if PRODUCT_KEYWORDS.search(text):
        return CommerceIntent(type=INTENT_PRODUCT, query=_extract_product_query(text))

    return CommerceIntent(type=INTENT_NONE)


def normalize_shop_domain(shop_domain: str) -> str:
    domain = (shop_domain or "").strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    return domain.rstrip("/")


class ShopifyClient:
    """Minimal Shopify Admin REST client (read-only)."""

    def __init__(self, store_domain: str, access_token: str, api_version: Optional[str] = None, timeout: float = 10.0):
        self.store_domain = normalize_shop_domain(store_domain)
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.timeout = timeout

    def _get_base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    def _get_headers(self) -> dict:
        return {
            "X-Shopify-Access-Token": self.access_token or "",
            "Content-Type": "application/json",
        }

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(f"{self._get_base_url()}/{path}", headers=self._get_headers(), params=params)

        if response.status_code != 200:
            raise ShopifyAPIError(response.status_code, response.text[:200])
        return response.json()

    def find_latest_order(self, name: Optional[str] = None, email: Optional[str] = None) -> Optional[dict]:
        """Most recent order matching an order name (`#1042`) or a customer email."""
        if not name and not email:
            return None
        params = {"status": "any", "limit": 1, "order": "created_at desc"}
        if name:
            params["name"] = name
        else:
            params["email"] = email
        orders = self._get("orders.json", params).get("orders") or []
        return orders[0] if orders else None

    def search_products(self, query: str, limit: int = PRODUCT_SEARCH_LIMIT) -> List[dict]:
        if not query:
            return []
        data = self._get("products.json", {"title": query, "limit": limit, "status": "active"})
        return (data.get("products") or [])[:limit]

    def get_shop(self) -> dict:
        return self._get("shop.json").get("shop") or {}


def _tracking_url(order: dict) -> Optional[str]:
    for fulfillment in order.get("fulfillments") or []:
        if fulfillment.get("tracking_url"):
            return fulfillment["tracking_url"]
        urls = fulfillment.get("tracking_urls") or []
        if urls:
            return urls[0]
    return None


def format_order_context(order: dict) -> str:
    status = "cancelled" if order.get("cancelled_at") else (order.get("financial_status") or "unknown")
    items = ", ".join(
        f"{item.get('quantity', 1)}x {item.get('title') or item.get('name') or 'item'}"
        for item in order.get("line_items") or []
    )
    total = f"{order.get('total_price', '')} {order.get('currency', '')}".strip()

    lines = [
        "ORDER INFORMATION:",
        f"Order: {order.get('name') or order.get('order_number')}",
        f"Status: {status}",
        f"Fulfillment: {order.get('fulfillment_status') or 'unfulfilled'}",
        f"Items: {items or 'none'}",
        f"Total: {total}",
    ]

    shipping = order.get("shipping_address") or {}
    destination = ", ".join(part for part in (shipping.get("city"), shipping.get("country")) if part)
    if destination:
        lines.append(f"Shipping to: {destination}")

    tracking = _tracking_url(order)
    if tracking:
        lines.append(f"Tracking: {tracking}")

    return "\n".join(lines)


def _in_stock(product: dict) -> bool:
    for variant in product.get("variants") or []:
        # Untracked inventory is always sellable.
        if not variant.get("inventory_management"):
            return True
        if (variant.get("inventory_quantity") or 0) > 0:
            return True
    return False


def format_product_context(products: List[dict]) -> str:
    lines = ["PRODUCT INFORMATION:"]
    for product in products:
        variants = product.get("variants") or []
        price = variants[0].get("price") if variants else None
        availability = "In stock" if _in_stock(product) else "Out of stock"
        price_text = f" - {price}" if price else ""
        lines.append(f"- {product.get('title')}{price_text} ({availability})")
    return "\n".join(lines)


def get_active_integration(db: Session, bot_id) -> Optional[CommerceIntegration]:
    return (
        db.query(CommerceIntegration)
        .filter(CommerceIntegration.bot_id == bot_id, CommerceIntegration.is_active.is_(True))
        .first()
    )


def build_commerce_context(db: Session, bot_id, message: str, visitor_email: Optional[str] = None) -> CommerceContext:
    integration = get_active_integration(db, bot_id)
    if not integration:
        return CommerceContext(intent=CommerceIntent(type=INTENT_NONE))

    intent = detect_intent(message)
    if intent.type == INTENT_NONE:
        return CommerceContext(intent=intent)

    client = ShopifyClient(integration.store_domain, integration.access_token)
    context_text = ""
    try:
        if intent.type == INTENT_ORDER:
            if intent.query:
                order = client.find_latest_order(name=intent.query)
            else:
                order = client.find_latest_order(email=visitor_email)
            if order:
                context_text = format_order_context(order)
        else:
            products = client.search_products(intent.query)
            if products:
                context_text = format_product_context(products)
    except (ShopifyAPIError, httpx.HTTPError, ValueError) as e:
        logger.warning(
            "Commerce lookup failed",
            extra={"context": {"bot_id": str(bot_id), "intent": intent.type, "error": str(e)}},
        )
        return CommerceContext(intent=intent)

    if not context_text:
        logger.info("Commerce lookup found no match", extra={"context": {"bot_id": str(bot_id), "intent": intent.type}})
    return CommerceContext(intent=intent, context_text=context_text)


def get_owned_bot(db: Session, user_id, bot_id) -> Bot:
    bot_uuid = to_uuid(bot_id)
    user_uuid = to_uuid(user_id)
    bot = None
    if bot_uuid and user_uuid:
        bot = db.query(Bot).filter(Bot.id == bot_uuid, Bot.user_id == user_uuid).first()
    if not bot:
        raise ForbiddenError("Bot not found or access denied")
    return bot


def start_shopify_connect(db: Session, user_id, bot_id, shop_domain: str) -> str:
    """Authorization URL for installing the store app on behalf of the bot owner."""
    if not settings.shopify_api_key:
        logger.error("SHOPIFY_API_KEY not configured")
        alert_error("Shopify connect attempted without SHOPIFY_API_KEY", {"bot_id": str(bot_id)})
        raise ServiceError("Shopify integration is not configured")

    domain = normalize_shop_domain(shop_domain)
    if not domain or not SHOP_DOMAIN_PATTERN.match(domain):
        raise ValidationError("Invalid shop domain")

    bot = get_owned_bot(db, user_id, bot_id)
    state = encode_state(
        {
            "kind": "shopify",
            "bot_id": str(bot.id),
            "user_id": str(user_id),
            "shop": domain,
        },
        expires_in=SHOPIFY_STATE_TTL,
    )
    query = urlencode(
        {
            "client_id": settings.shopify_api_key,
            "scope": ",".join(SHOPIFY_SCOPES),
            "redirect_uri": f"{settings.public_base_url.rstrip('/')}/integrations/shopify/callback",
            "state": state,
        }
    )
    return f"https://{domain}/admin/oauth/authorize?{query}"


def exchange_shopify_code(shop: str, code: str) -> str:
    with httpx.Client(timeout=10.0) as client:
        response = client.post(
            f"https://{shop}/admin/oauth/access_token",
            json={
                "client_id": settings.shopify_api_key,
                "client_secret": settings.shopify_api_secret,
                "code": code,
            },
        )
    if response.status_code != 200:
        raise ShopifyAPIError(response.status_code, response.text[:200])
    token = response.json().get("access_token")
    if not token:
        raise ShopifyAPIError(response.status_code, "access_token missing")
    return token


def _dashboard_url(**params) -> str:
    return f"{settings.frontend_url.rstrip('/')}/dashboard?{urlencode(params)}"


def complete_shopify_connect(db: Session, code: Optional[str], state: Optional[str], shop: Optional[str]) -> str:
    """Finish the store install and return the dashboard redirect URL."""
    if not code or not state or not shop:
        return _dashboard_url(shopify="error", reason="missing_params")

    try:
        payload = decode_state(state)
        if payload.get("kind") != "shopify":
            raise OAuthStateError("invalid_state")
        domain = normalize_shop_domain(shop)
        if domain != payload.get("shop"):
            raise OAuthStateError("state_mismatch")
        bot = get_owned_bot(db, payload.get("user_id"), payload.get("bot_id"))
    except OAuthStateError as e:
        logger.warning("Shopify callback rejected", extra={"context": {"reason": e.reason}})
        return _dashboard_url(shopify="error", reason=e.reason)
    except ForbiddenError:
        return _dashboard_url(shopify="error", reason="bot_not_found")

    try:
        access_token = exchange_shopify_code(domain, code)
    except (ShopifyAPIError, httpx.HTTPError, ValueError) as e:
        logger.error("Shopify token exchange failed", extra={"context": {"shop": domain, "error": str(e)}})
        return _dashboard_url(shopify="error", reason="token_exchange_failed")

    try:
        integration = db.query(CommerceIntegration).filter(CommerceIntegration.bot_id == bot.id).first()
        now = datetime.now(timezone.utc)
        if integration:
            integration.store_domain = domain
            integration.access_token = access_token
            integration.is_active = True
            integration.updated_at = now
        else:
            db.add(
                CommerceIntegration(
                    bot_id=bot.id,
                    store_domain=domain,
                    access_token=access_token,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to save Shopify integration", extra={"context": {"bot_id": str(bot.id), "error": str(e)}})
        return _dashboard_url(shopify="error", reason="save_failed")

    logger.info("Shopify integration connected", extra={"context": {"bot_id": str(bot.id), "shop": domain}})
    return _dashboard_url(shopify="connected")


def check_commerce_connection(db: Session, user_id, bot_id) -> dict:
    bot = get_owned_bot(db, user_id, bot_id)
    integration = get_active_integration(db, bot.id)
    if not integration:
        raise NotFoundError("No active Shopify integration")

    client = ShopifyClient(integration.store_domain, integration.access_token)
    try:
        shop = client.get_shop()
    except (ShopifyAPIError, httpx.HTTPError, ValueError) as e:
        logger.warning("Shopify connection test failed", extra={"context": {"bot_id": str(bot.id), "error": str(e)}})
        return {"success": False, "error": "Could not reach the store"}

    return {"success": True, "shop_name": shop.get("name"), "domain": shop.get("domain") or integration.store_domain}
