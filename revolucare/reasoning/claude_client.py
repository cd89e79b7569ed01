"""Anthropic Claude provider: first choice for clinical extraction and care plan drafting."""
import json
import time
from typing import Any, Dict, Optional

import anthropic
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from revolucare.config.settings import Settings
from revolucare.config.logging_config import get_logger
from revolucare.reasoning.json_utils import extract_json_from_text

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a clinical documentation assistant supporting licensed care managers. "
    "Answer only from the supplied material and respond in the requested format."
)

SDK_TIMEOUT_SECONDS = 180.0


class ClaudeClientError(Exception):
    """A Claude call failed; the SDK error, if any, is chained as ``__cause__``."""


class ClaudeClient:
    """Thin async wrapper over ``anthropic.AsyncAnthropic`` messages."""

    def __init__(self, settings: Settings, client: Optional[anthropic.AsyncAnthropic] = None):
        self.client = client or anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=SDK_TIMEOUT_SECONDS,
        )
        self.model = settings.claude_model
        self.max_tokens = settings.claude_max_output_tokens

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((anthropic.APIConnectionError, anthropic.RateLimitError)),
        reraise=True,
    )
    async def _send(self, prompt: str, system: str, temperature: float):
        return await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.0,
        response_format: str = "json",
    ) -> Dict[str, Any]:
        """
        Send one user turn to Claude.

        Args:
            prompt: Prompt including the document or fact context
            system_prompt: Replaces DEFAULT_SYSTEM_PROMPT when given
            temperature: Sampling temperature
            response_format: "json" parses the reply into a dict, "text" returns it raw

        Returns:
            The parsed object (or ``{"response": text}``) with a ``_usage`` entry

        Raises:
            ClaudeClientError: On API failure, an empty reply or unparseable JSON
        """
        started = time.monotonic()
        try:
            message = await self._send(prompt, system_prompt or DEFAULT_SYSTEM_PROMPT, temperature)
        except anthropic.APIStatusError as e:
            logger.error("Claude rejected request", model=self.model, status_code=e.status_code, error=str(e))
            raise ClaudeClientError(f"Claude returned HTTP {e.status_code}") from e
        except anthropic.AnthropicError as e:
            logger.error("Claude request failed", model=self.model, error_type=type(e).__name__, error=str(e))
            raise ClaudeClientError(f"Claude request failed: {e}") from e

        text_blocks = [block.text for block in message.content if getattr(block, "type", "text") == "text"]
        if not text_blocks:
            raise ClaudeClientError("Claude reply contained no text")
        text = "".join(text_blocks)

        usage = message.usage
        usage_meta = {
            "model": self.model,
            "input_tokens": getattr(usage, "input_tokens", 0),
            "output_tokens": getattr(usage, "output_tokens", 0),
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
        }
        logger.debug("Claude reply received", chars=len(text), **usage_meta)

        if response_format != "json":
            return {"response": text, "_usage": usage_meta}
        try:
            parsed = extract_json_from_text(text)
        except json.JSONDecodeError as e:
            logger.error("Claude reply was not JSON", model=self.model, error=str(e))
            raise ClaudeClientError("Claude reply was not valid JSON") from e
        parsed["_usage"] = usage_meta
        return parsed

    async def health_check(self) -> bool:
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=5,
                messages=[{"role": "user", "content": "ping"}],
            )
        except anthropic.AnthropicError as e:
            logger.warning("Claude health check failed", error=str(e))
            return False
        return bool(message.content)
