import logging
from typing import Any

from agentd.errors import ProviderError
from agentd.providers.base import ProviderResponse, normalize_response
from common.llm import completion_with_usage, provider_for

logger = logging.getLogger(__name__)


class LiteLLMProvider:
    def __init__(self, temperature: float = 0.0, default_max_tokens: int = 4096):
        self.temperature = temperature
        self.default_max_tokens = default_max_tokens

    def prompt(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        logger.debug(f"Calling {model} with {len(messages)} messages and {len(tools or [])} tools")
        try:
            response, usage = completion_with_usage(
                model=model,
                messages=messages,
                tools=tools or None,
                temperature=self.temperature,
                max_tokens=max_tokens or self.default_max_tokens,
            )
            return normalize_response(response, usage=usage, provider=provider_for(model))
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Model call to {model} failed: {e}") from e
