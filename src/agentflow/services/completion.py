"""Completion service - LLM text completion used by planning and the llm tool."""

import asyncio
from typing import Any, Protocol

import anthropic
import structlog
from anthropic import Anthropic
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from agentflow.config import Settings
from agentflow.core.errors import ExecutionFailure

logger = structlog.get_logger(__name__)


class CompletionService(Protocol):
    """Abstract interface for text completion."""

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        model: str | None = None,
    ) -> str:
        """Return the completion text for a system prompt and chat messages."""


class AnthropicCompletionService:
    """CompletionService backed by the Anthropic Messages API."""

    def __init__(self, config: Settings, anthropic_client: Anthropic | None = None):
        """Initialize the service.

        Args:
            config: Settings configuration
            anthropic_client: Anthropic client instance (optional, will create if not provided)

        Raises:
            ValueError: If no client is given and no API key is configured
        """
        self.config = config
        if anthropic_client is None:
            if not config.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY is required for the Anthropic completion service")
            anthropic_client = Anthropic(api_key=config.anthropic_api_key)
        self.anthropic_client = anthropic_client

    @retry(
        retry=retry_if_exception_type((anthropic.APIConnectionError, anthropic.RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_message(self, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self.anthropic_client.messages.create, **kwargs)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        model: str | None = None,
    ) -> str:
        """Call the Messages API and return the concatenated text blocks.

        Raises:
            ExecutionFailure: If the API call fails
        """
        model = model or self.config.anthropic_model
        logger.info("calling_claude_api", model=model, messages=len(messages))

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self.config.anthropic_max_tokens,
            "system": system_prompt,
            "messages": messages,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = await self._create_message(**kwargs)
        except anthropic.APIError as e:
            logger.error("claude_api_failed", model=model, error=str(e))
            raise ExecutionFailure(f"Completion failed: {e}") from e

        text = "".join(block.text for block in response.content if hasattr(block, "text"))
        logger.info(
            "claude_api_complete",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return text
