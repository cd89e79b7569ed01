"""Azure OpenAI provider: the last fallback in every routing order."""
import json
import time
from typing import Any, Dict, List, Optional

from openai import AsyncAzureOpenAI, APIConnectionError, RateLimitError, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from revolucare.config.settings import Settings
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

SDK_TIMEOUT_SECONDS = 180.0


class AzureOpenAIError(Exception):
    """An Azure OpenAI call failed or returned nothing usable."""


class AzureOpenAIClient:
    """
    Chat-completions wrapper for an Azure OpenAI deployment.

    JSON requests use the service's ``json_object`` response format, so the
    reply is parsed strictly rather than scraped out of prose.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncAzureOpenAI] = None):
        self.client = client or AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            api_version=settings.azure_openai_api_version,
            azure_endpoint=settings.azure_openai_endpoint,
            timeout=SDK_TIMEOUT_SECONDS,
        )
        self.deployment = settings.azure_openai_deployment
        self.max_tokens = settings.azure_max_output_tokens

    @property
    def accepts_temperature(self) -> bool:
        # Reasoning "mini" deployments reject the temperature parameter
        return "mini" not in self.deployment.lower()

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((APIConnectionError, RateLimitError)),
        reraise=True,
    )
    async def _complete(self, **params: Any):
        return await self.client.chat.completions.create(**params)

    def _request(self, prompt: str, system_prompt: Optional[str], temperature: float, want_json: bool) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        params: Dict[str, Any] = {
            "model": self.deployment,
            "messages": messages,
            "max_completion_tokens": self.max_tokens,
        }
        if want_json:
            params["response_format"] = {"type": "json_object"}
        if self.accepts_temperature:
            params["temperature"] = temperature
        return params

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        response_format: str = "text",
    ) -> Dict[str, Any]:
        """
        Run a chat completion against the configured deployment.

        Returns:
            Parsed JSON object or ``{"response": text}``, each with ``_usage``

        Raises:
            AzureOpenAIError: On API errors, content filtering, empty or non-object replies
        """
        want_json = response_format == "json"
        started = time.monotonic()
        try:
            completion = await self._complete(**self._request(prompt, system_prompt, temperature, want_json))
        except OpenAIError as e:
            logger.error("Azure OpenAI request failed", deployment=self.deployment, error=str(e))
            raise AzureOpenAIError(f"Azure OpenAI request failed: {e}") from e

        if not completion.choices:
            raise AzureOpenAIError("Azure OpenAI returned no choices")
        choice = completion.choices[0]
        text = choice.message.content
        if choice.finish_reason == "content_filter":
            raise AzureOpenAIError("Reply withheld by the Azure content filter")
        if not text:
            raise AzureOpenAIError(f"Azure OpenAI reply was empty (finish_reason={choice.finish_reason})")

        usage = completion.usage
        usage_meta = {
            "model": self.deployment,
            "input_tokens": usage.prompt_tokens if usage else 0,
            "output_tokens": usage.completion_tokens if usage else 0,
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
        }

        if not want_json:
            return {"response": text, "_usage": usage_meta}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Azure OpenAI reply was not JSON", deployment=self.deployment, error=str(e))
            raise AzureOpenAIError("Azure OpenAI reply was not valid JSON") from e
        if not isinstance(parsed, dict):
            raise AzureOpenAIError("Azure OpenAI JSON reply was not an object")
        parsed["_usage"] = usage_meta
        return parsed

    async def health_check(self) -> bool:
        try:
            completion = await self.client.chat.completions.create(
                model=self.deployment,
                messages=[{"role": "user", "content": "ping"}],
                max_completion_tokens=5,
            )
        except OpenAIError as e:
            logger.warning("Azure OpenAI health check failed", error=str(e))
            return False
        return bool(completion.choices)
