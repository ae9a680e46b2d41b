"""
Model Service Client
Thin wrapper around the Anthropic Messages API: prompt in, text out,
with token usage and an estimated cost for each call.
"""

import logging
import time
from typing import Optional

import anthropic

from promo_mailer.errors import ModelServiceError
from promo_mailer.models import ModelResponse, UsageMetadata

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_TIMEOUT = 120.0  # seconds per call
MAX_RETRIES = 3

# USD per million tokens (input, output), matched by model-name prefix
MODEL_PRICING = {
    "claude-opus-4-5": (5.00, 25.00),
    "claude-opus-4": (15.00, 75.00),
    "claude-sonnet-4": (3.00, 15.00),
    "claude-3-7-sonnet": (3.00, 15.00),
    "claude-haiku-4-5": (1.00, 5.00),
    "claude-3-5-haiku": (0.80, 4.00),
}

# Transient errors worth another attempt: rate limits, overload/5xx, network and timeouts
RETRYABLE_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> Optional[float]:
    """Estimate the USD cost of a call, or None for models without known pricing."""
    prefixes = sorted((p for p in MODEL_PRICING if model.startswith(p)), key=len, reverse=True)
    if not prefixes:
        return None
    input_rate, output_rate = MODEL_PRICING[prefixes[0]]
    return round((input_tokens * input_rate + output_tokens * output_rate) / 1_000_000, 6)


class AnthropicModelClient:
    """
    Model service backed by Claude.

    Any object exposing the same ``complete`` method can stand in for this
    class; the pipeline stages only rely on that one call.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
    ):
        self.model = model
        self.max_retries = max(1, max_retries)
        # Retries are handled here so backoff and logging stay in one place.
        self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        max_output_tokens: int = 4096,
    ) -> ModelResponse:
        """
        Send one prompt and wait for the complete response.

        Args:
            user_prompt: The user turn.
            system_prompt: Optional system instruction.
            max_output_tokens: Upper bound on generated tokens.

        Returns:
            ModelResponse with the text blocks joined with newlines, in order.

        Raises:
            ModelServiceError: The call failed, after retrying transient errors.
        """
        request = {
            "model": self.model,
            "max_tokens": max_output_tokens,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        message = None
        for attempt in range(1, self.max_retries + 1):
            try:
                message = self._client.messages.create(**request)
                break
            except RETRYABLE_ERRORS as e:
                if attempt == self.max_retries:
                    raise ModelServiceError(f"{type(e).__name__}: {e}") from e
                wait = 2 ** attempt
                logger.warning(f"Anthropic API error (attempt {attempt}/{self.max_retries}): {e}. Retrying in {wait}s...")
                time.sleep(wait)
            except anthropic.APIError as e:
                raise ModelServiceError(f"{type(e).__name__}: {e}") from e

        text = "\n".join(
            block.text for block in message.content
            if getattr(block, "type", "text") == "text"
        )

        usage = None
        raw_usage = getattr(message, "usage", None)
        if raw_usage is not None:
            input_tokens = getattr(raw_usage, "input_tokens", 0) or 0
            output_tokens = getattr(raw_usage, "output_tokens", 0) or 0
            usage = UsageMetadata(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                estimated_cost_usd=estimate_cost(self.model, input_tokens, output_tokens),
            )
            logger.info(f"{self.model}: {input_tokens} in / {output_tokens} out tokens")

        return ModelResponse(text=text, usage=usage)
