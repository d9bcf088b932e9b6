"""Meta Graph API client used by the OAuth flow, token refresh and message delivery."""

from typing import List, Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("meta_graph")

GRAPH_HOST = "https://graph.facebook.com"
PAGE_WEBHOOK_FIELDS = ["messages", "messaging_postbacks"]


class MetaGraphError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Meta Graph API error: {status_code} - {message}")


class MetaGraphClient:
    def __init__(
        self,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        version: Optional[str] = None,
        timeout: float = 15.0,
    ):
        self.app_id = app_id or settings.meta_app_id
        self.app_secret = app_secret or settings.meta_app_secret
        self.version = version or settings.meta_graph_version
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return f"{GRAPH_HOST}/{self.version}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.request(method, f"{self.base_url}/{path}", params=params, json=json, headers=headers)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200 or (isinstance(data, dict) and data.get("error")):
            error = data.get("error") if isinstance(data, dict) else None
            message = error.get("message") if isinstance(error, dict) else response.text[:200]
            raise MetaGraphError(response.status_code, message or "unknown error")
        return data

    def exchange_code(self, code: str, redirect_uri: str) -> dict:
        """Authorization code -> short-lived user token."""
        return self._request(
            "GET",
            "oauth/access_token",
            params={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    def exchange_long_lived(self, token: str) -> dict:
        """Any user token -> long-lived token (`access_token`, `expires_in`)."""
        return self._request(
            "GET",
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": token,
            },
        )

    def get_pages(self, user_token: str) -> List[dict]:
        data = self._request(
            "GET",
            "me/accounts",
            params={"fields": "id,name,instagram_business_account{id,username}", "access_token": user_token},
        )
        return data.get("data") or []

    def get_page_token(self, page_id: str, user_token: str) -> Optional[str]:
        data = self._request("GET", page_id, params={"fields": "access_token", "access_token": user_token})
        return data.get("access_token")

    def subscribe_page(self, page_id: str, page_token: str) -> bool:
        """Subscribe our app to the page's message webhooks. Failure is not fatal."""
        try:
            self._request(
                "POST",
                f"{page_id}/subscribed_apps",
                json={"subscribed_fields": PAGE_WEBHOOK_FIELDS, "access_token": page_token},
            )
        except (MetaGraphError, httpx.HTTPError) as e:
            logger.warning("Page webhook subscription failed", extra={"context": {"page_id": page_id, "error": str(e)}})
            return False
        return True

    def get_whatsapp_accounts(self, user_token: str) -> List[dict]:
        """Businesses with their owned WhatsApp business accounts and phone numbers."""
        data = self._request(
            "GET",
            "me/businesses",
            params={
                "fields": "id,name,owned_whatsapp_business_accounts"
                "{id,name,phone_numbers{id,verified_name,display_phone_number}}",
                "access_token": user_token,
            },
        )
        return data.get("data") or []

    def subscribe_waba(self, waba_id: str, token: str) -> bool:
        try:
            self._request("POST", f"{waba_id}/subscribed_apps", headers={"Authorization": f"Bearer {token}"})
        except (MetaGraphError, httpx.HTTPError) as e:
            logger.warning("WABA webhook subscription failed", extra={"context": {"waba_id": waba_id, "error": str(e)}})
            return False
        return True

    def send_message(self, sender_id: str, token: str, payload: dict) -> dict:
        return self._request(
            "POST",
            f"{sender_id}/messages",
            json=payload,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
