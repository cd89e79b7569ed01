"""Google Gemini provider: first choice for reading text, forms and ID documents."""
import json
import time
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core.exceptions import (
    GoogleAPIError,
    ServiceUnavailable,
    TooManyRequests,
    DeadlineExceeded,
)
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from revolucare.config.settings import Settings
from revolucare.config.logging_config import get_logger
from revolucare.reasoning.json_utils import extract_json_from_text

logger = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 300

_RETRY_ON = (ServiceUnavailable, TooManyRequests, DeadlineExceeded, ConnectionError, TimeoutError)


class GeminiError(Exception):
    """A Gemini call failed; the SDK error is chained as ``__cause__``."""


class GeminiClient:
    """Async wrapper around ``google.generativeai`` GenerativeModel."""

    def __init__(self, settings: Settings):
        genai.configure(api_key=settings.gemini_api_key)
        self.model_name = settings.gemini_model
        self.max_output_tokens = settings.gemini_max_output_tokens
        self.model = genai.GenerativeModel(self.model_name)

    def _model_for(self, system_prompt: Optional[str]):
        # System instructions bind to the model object in this SDK
        if not system_prompt:
            return self.model
        return genai.GenerativeModel(self.model_name, system_instruction=system_prompt)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(_RETRY_ON),
        reraise=True,
    )
    async def _send(self, model, prompt: str, config):
        return await model.generate_content_async(
            prompt,
            generation_config=config,
            request_options={"timeout": REQUEST_TIMEOUT_SECONDS},
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        response_format: str = "text",
    ) -> Dict[str, Any]:
        """
        Generate content with Gemini.

        JSON requests set ``response_mime_type`` so the model answers with
        JSON only; the reply is still parsed leniently.

        Raises:
            GeminiError: On API failure, blocked or empty output, or bad JSON
        """
        want_json = response_format == "json"
        config = genai.GenerationConfig(
            temperature=temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json" if want_json else "text/plain",
        )

        started = time.monotonic()
        try:
            reply = await self._send(self._model_for(system_prompt), prompt, config)
            # .text raises ValueError when the candidate was blocked
            text = reply.text
        except (GoogleAPIError, ValueError, ConnectionError, TimeoutError) as e:
            logger.error("Gemini request failed", model=self.model_name, error_type=type(e).__name__, error=str(e))
            raise GeminiError(f"Gemini request failed: {e}") from e
        if not text:
            raise GeminiError("Gemini reply was empty")

        counts = getattr(reply, "usage_metadata", None)
        usage_meta = {
            "model": self.model_name,
            "input_tokens": getattr(counts, "prompt_token_count", 0),
            "output_tokens": getattr(counts, "candidates_token_count", 0),
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
        }

        if not want_json:
            return {"response": text, "_usage": usage_meta}
        try:
            parsed = extract_json_from_text(text)
        except json.JSONDecodeError as e:
            logger.error("Gemini reply was not JSON", model=self.model_name, error=str(e))
            raise GeminiError("Gemini reply was not valid JSON") from e
        parsed["_usage"] = usage_meta
        return parsed

    async def health_check(self) -> bool:
        try:
            reply = await self.model.generate_content_async("ping")
            return bool(reply.text)
        except (GoogleAPIError, ValueError) as e:
            logger.warning("Gemini health check failed", error=str(e))
            return False
