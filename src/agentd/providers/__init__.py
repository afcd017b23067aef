from agentd.providers.base import Choice, ModelProvider, ProviderResponse, normalize_response
from agentd.providers.litellm_provider import LiteLLMProvider

__all__ = ["Choice", "LiteLLMProvider", "ModelProvider", "ProviderResponse", "normalize_response"]
