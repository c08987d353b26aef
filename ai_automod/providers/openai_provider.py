"""
OpenAI and OpenAI-compatible adapters.

Both use chat completions in JSON mode. The compatible adapter only differs
in its base URL, which lets DeepSeek-style vendors sit behind the same code.
"""

import logging
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from ai_automod.core.errors import AIError, AIErrorType
from ai_automod.core.models import AnalysisRequest, TokenUsage
from .base import AIProvider, RawResponse, build_system_prompt, build_user_prompt

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 1500


class OpenAIProvider(AIProvider):
    """Chat completions adapter using ``AsyncOpenAI``."""

    provider_id = "openai"

    def __init__(self, config, retry=None, sleep=None, client: Optional[Any] = None):
        super().__init__(config, retry=retry, sleep=sleep)
        # Retries are ours; the SDK must not retry underneath them
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
        )

    async def _call(self, request: AnalysisRequest, schema: Dict[str, Any]) -> RawResponse:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": build_system_prompt(schema)},
                {"role": "user", "content": build_user_prompt(request)},
            ],
            response_format={"type": "json_object"},
            temperature=0,
            max_tokens=MAX_OUTPUT_TOKENS,
        )

        usage = response.usage
        if not usage:
            raise AIError(
                AIErrorType.PROVIDER_ERROR,
                f"{self.provider_id} response missing usage information",
                self.provider_id,
                request.correlation_id,
            )
        token_usage = TokenUsage(
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
        )

        content = response.choices[0].message.content if response.choices else None
        return RawResponse(
            payload=content or "",
            usage=token_usage,
            model=getattr(response, "model", None) or self.model,
        )

    async def _ping(self) -> None:
        await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=1,
        )

    def classify_error(self, error: Exception) -> AIErrorType:
        if isinstance(error, openai.RateLimitError):
            return AIErrorType.RATE_LIMITED
        if isinstance(error, openai.APITimeoutError):
            return AIErrorType.TIMEOUT
        return super().classify_error(error)


class OpenAICompatibleProvider(OpenAIProvider):
    """OpenAI wire protocol against a vendor-specific base URL."""

    provider_id = "openai-compatible"

    def __init__(self, config, retry=None, sleep=None, client: Optional[Any] = None):
        if client is None and not config.base_url:
            raise ValueError("openai-compatible provider requires a base_url")
        super().__init__(config, retry=retry, sleep=sleep, client=client)
