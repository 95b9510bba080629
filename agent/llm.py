"""
LLM boundary: the provider protocol and its resilient wrapper.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Union

from .circuit_breaker import CircuitBreakerRegistry
from .retry import RetryOptions, retry_with_backoff
from .steps import ModelResponse

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    provider_name: str

    async def step(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Union[str, Dict[str, Any]]] = None,
    ) -> ModelResponse:
        ...


class ResilientLLM:
    """Retry with backoff around a circuit breaker around the provider."""

    def __init__(
        self,
        provider: LLMClient,
        breakers: CircuitBreakerRegistry,
        retry_options: Optional[RetryOptions] = None,
        provider_name: Optional[str] = None,
    ):
        self.provider = provider
        self.breakers = breakers
        self.retry_options = retry_options or RetryOptions()
        self.provider_name = provider_name or getattr(provider, "provider_name", type(provider).__name__)

    async def step(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Union[str, Dict[str, Any]]] = None,
    ) -> ModelResponse:
        breaker = self.breakers.get(self.provider_name)

        async def attempt() -> ModelResponse:
            return await breaker.execute(
                lambda: self.provider.step(messages, model, tools=tools, tool_choice=tool_choice)
            )

        return await retry_with_backoff(attempt, self.retry_options)
