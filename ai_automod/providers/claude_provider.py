"""
Anthropic Claude adapter.

Structured output is obtained through tool use: the caller's schema becomes
the ``input_schema`` of a single forced tool, and the findings are read from
the ``tool_use`` block of the reply.
"""

import logging
from typing import Any, Dict, Optional

import anthropic
from anthropic import AsyncAnthropic

from ai_automod.core.errors import AIError, AIErrorType
from ai_automod.core.models import AnalysisRequest, TokenUsage
from .base import AIProvider, RawResponse, MODERATION_INSTRUCTIONS, build_user_prompt

logger = logging.getLogger(__name__)

TOOL_NAME = "record_analysis"
MAX_OUTPUT_TOKENS = 1500


class ClaudeProvider(AIProvider):
    """Messages API adapter using ``AsyncAnthropic``."""

    provider_id = "claude"

    def __init__(self, config, retry=None, sleep=None, client: Optional[Any] = None):
        super().__init__(config, retry=retry, sleep=sleep)
        self.client = client or AsyncAnthropic(api_key=config.api_key, max_retries=0)

    async def _call(self, request: AnalysisRequest, schema: Dict[str, Any]) -> RawResponse:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            system=MODERATION_INSTRUCTIONS,
            tools=[{
                "name": TOOL_NAME,
                "description": "Record the structured moderation analysis",
                "input_schema": schema,
            }],
            tool_choice={"type": "tool", "name": TOOL_NAME},
            messages=[{"role": "user", "content": build_user_prompt(request)}],
        )

        token_usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == TOOL_NAME:
                return RawResponse(
                    payload=block.input,
                    usage=token_usage,
                    model=getattr(response, "model", None) or self.model,
                )

        # Billed but unusable
        raise AIError(
            AIErrorType.VALIDATION_FAILED,
            "No tool_use block found in Claude response",
            self.provider_id,
            request.correlation_id,
            usage=token_usage,
        )

    async def _ping(self) -> None:
        await self.client.messages.create(
            model=self.model,
            max_tokens=1,
            messages=[{"role": "user", "content": "ping"}],
        )

    def classify_error(self, error: Exception) -> AIErrorType:
        if isinstance(error, anthropic.RateLimitError):
            return AIErrorType.RATE_LIMITED
        if isinstance(error, anthropic.APITimeoutError):
            return AIErrorType.TIMEOUT
        return super().classify_error(error)
