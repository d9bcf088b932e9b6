from typing import List, Optional

import httpx

from app.errors import UpstreamTerminalError, UpstreamTransientError
from app.logging_config import get_logger
from app.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.gateway")


class GatewayProvider(LLMProvider):
    """OpenAI-compatible chat-completions gateway."""

    def __init__(self, api_key: str, base_url: str, default_model: str, timeout_seconds: float = 60.0):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"Gateway request: model={model}, messages_count={len(messages)}")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"Gateway transport error: {e}")
            raise UpstreamTransientError("Failed to generate response")

        if response.status_code == 429:
            logger.warning("Gateway rate limited")
            raise UpstreamTransientError("Rate limit exceeded. Please try again later.", status_code=429)
        if response.status_code == 402:
            logger.error("Gateway credits exhausted")
            raise UpstreamTerminalError("Service temporarily unavailable.")
        if response.status_code != 200:
            logger.error(f"Gateway error: {response.status_code} - {response.text[:500]}")
            raise UpstreamTransientError("Failed to generate response")

        try:
            data = response.json()
        except ValueError:
            logger.error("Gateway returned non-JSON body")
            raise UpstreamTransientError("Failed to generate response")

        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
        logger.debug(f"Gateway content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
