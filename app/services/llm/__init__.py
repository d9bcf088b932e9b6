from app.services.llm.base import LLMProvider, LLMResponse
from app.services.llm.gateway_provider import GatewayProvider

__all__ = ["LLMProvider", "LLMResponse", "GatewayProvider"]
