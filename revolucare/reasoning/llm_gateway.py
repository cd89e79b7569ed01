"""Routes extraction and care plan prompts to LLM providers with fallback."""
import asyncio
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import anthropic
import openai
from google.api_core import exceptions as google_errors

from revolucare.models.enums import TaskCategory, LLMProvider
from revolucare.config.settings import Settings
from revolucare.config.logging_config import get_logger
from revolucare.config.request_context import get_correlation_id

logger = get_logger(__name__)

CIRCUIT_BREAKER_THRESHOLD = 3   # consecutive failures before a provider is skipped
CIRCUIT_BREAKER_COOLDOWN = 60   # seconds a tripped provider stays skipped
TRANSIENT_RETRY_DELAY = 2       # seconds before the single same-provider retry


def _sdk_errors(module: Any, *names: str) -> Tuple[Type[BaseException], ...]:
    return tuple(getattr(module, name) for name in names)


# Errors a retry cannot fix: credentials, bad requests, unknown models, unparseable output
_NON_RETRYABLE: Tuple[Type[BaseException], ...] = (
    _sdk_errors(anthropic, "AuthenticationError", "BadRequestError", "NotFoundError", "PermissionDeniedError")
    + _sdk_errors(openai, "AuthenticationError", "BadRequestError", "NotFoundError", "PermissionDeniedError")
    + _sdk_errors(google_errors, "PermissionDenied", "InvalidArgument")
    + (json.JSONDecodeError,)
)

# Rate limits, dropped connections, provider timeouts and 5xx responses
_RETRYABLE: Tuple[Type[BaseException], ...] = (
    _sdk_errors(anthropic, "RateLimitError", "APIConnectionError", "APITimeoutError", "InternalServerError")
    + _sdk_errors(openai, "RateLimitError", "APIConnectionError", "APITimeoutError", "InternalServerError")
    + _sdk_errors(google_errors, "TooManyRequests", "ServiceUnavailable", "DeadlineExceeded")
    + (ConnectionError, TimeoutError)
)

DEFAULT_TASK_MODEL_ROUTING: Dict[TaskCategory, List[LLMProvider]] = {
    TaskCategory.MEDICAL_EXTRACTION: [LLMProvider.CLAUDE, LLMProvider.AZURE_OPENAI],
    TaskCategory.CARE_PLAN_GENERATION: [LLMProvider.CLAUDE, LLMProvider.AZURE_OPENAI],
    TaskCategory.TEXT_EXTRACTION: [LLMProvider.GEMINI, LLMProvider.AZURE_OPENAI],
    TaskCategory.FORM_RECOGNITION: [LLMProvider.GEMINI, LLMProvider.AZURE_OPENAI],
    TaskCategory.IDENTITY_VERIFICATION: [LLMProvider.GEMINI, LLMProvider.AZURE_OPENAI],
}


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether a failed provider call is worth retrying.

    Provider clients wrap SDK exceptions and chain the original as
    ``__cause__``, so the whole cause chain is walked. The first error in
    the chain that is recognised decides; anything unrecognised is treated
    as transient and gets its one retry.
    """
    seen = error
    while seen is not None:
        if isinstance(seen, _NON_RETRYABLE):
            return False
        if isinstance(seen, _RETRYABLE):
            return True
        seen = seen.__cause__
    return True


def load_task_model_routing(config_path: Optional[Path]) -> Dict[TaskCategory, List[LLMProvider]]:
    """
    Build the task → provider order, overlaying an optional JSON file.

    The file looks like ``{"routing": {"text_extraction": ["gemini", "azure_openai"]}}``.
    Unknown tasks and providers are ignored; tasks the file leaves out keep
    their default order.
    """
    routing = dict(DEFAULT_TASK_MODEL_ROUTING)
    if config_path is None:
        return routing

    try:
        overrides = json.loads(Path(config_path).read_text(encoding="utf-8")).get("routing", {})
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("LLM routing file unreadable, keeping defaults", path=str(config_path), error=str(e))
        return routing

    known_providers = {p.value for p in LLMProvider}
    for task_name, provider_names in overrides.items():
        try:
            task = TaskCategory(task_name)
        except ValueError:
            logger.warning("Ignoring routing for unknown task", task=task_name)
            continue
        order = [LLMProvider(name) for name in provider_names if name in known_providers]
        if order:
            routing[task] = order

    logger.info("LLM routing overrides applied", path=str(config_path), overridden=len(overrides))
    return routing


class LLMGatewayError(Exception):
    """No routed provider produced a response in time."""


@dataclass
class _Breaker:
    """Consecutive-failure counter for one provider."""

    failures: int = 0
    tripped_at: float = 0.0


class LLMGateway:
    """
    Single entry point for every model call in the care planning core.

    Each task category has an ordered provider list (clinical reasoning goes
    to Claude first, document reading to Gemini first, both fall back to
    Azure OpenAI). A provider gets one retry on a transient error and is
    then abandoned for the next one. Providers that keep failing are
    skipped for a cooldown. Breakers live on the instance, so two gateways
    never share failure state.
    """

    def __init__(
        self,
        settings: Settings,
        routing: Optional[Dict[TaskCategory, List[LLMProvider]]] = None,
        clients: Optional[Dict[LLMProvider, Any]] = None,
        transient_retry_delay: float = TRANSIENT_RETRY_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            settings: Provides provider credentials, models and the call timeout
            routing: Task → provider order (defaults to the routing file or built-ins)
            clients: Ready-made provider clients; others are built on first use
            transient_retry_delay: Pause before the same-provider retry
            clock: Monotonic time source for breaker cooldowns
        """
        self.settings = settings
        self.routing = routing or load_task_model_routing(settings.llm_routing_config)
        self.timeout = settings.llm_gateway_timeout_seconds
        self.transient_retry_delay = transient_retry_delay
        self._clients: Dict[LLMProvider, Any] = dict(clients or {})
        self._breakers: Dict[LLMProvider, _Breaker] = {}
        self._clock = clock

    def _client_for(self, provider: LLMProvider):
        if provider not in self._clients:
            self._clients[provider] = self._build_client(provider)
        return self._clients[provider]

    def _build_client(self, provider: LLMProvider):
        if provider == LLMProvider.CLAUDE:
            from revolucare.reasoning.claude_client import ClaudeClient
            return ClaudeClient(self.settings)
        if provider == LLMProvider.GEMINI:
            from revolucare.reasoning.gemini_client import GeminiClient
            return GeminiClient(self.settings)
        if provider == LLMProvider.AZURE_OPENAI:
            from revolucare.reasoning.openai_client import AzureOpenAIClient
            return AzureOpenAIClient(self.settings)
        raise ValueError(f"No client for provider {provider}")

    # Circuit breaker

    def is_circuit_open(self, provider: LLMProvider) -> bool:
        """True while a provider that hit the failure threshold is cooling down."""
        breaker = self._breakers.get(provider)
        if breaker is None or breaker.failures < CIRCUIT_BREAKER_THRESHOLD:
            return False
        if self._clock() - breaker.tripped_at < CIRCUIT_BREAKER_COOLDOWN:
            return True
        # Half-open: let the next call try the provider
        del self._breakers[provider]
        logger.info("Circuit breaker closed after cooldown", provider=provider.value)
        return False

    def _note_failure(self, provider: LLMProvider) -> None:
        breaker = self._breakers.setdefault(provider, _Breaker())
        breaker.failures += 1
        breaker.tripped_at = self._clock()
        if breaker.failures == CIRCUIT_BREAKER_THRESHOLD:
            logger.warning("Circuit breaker opened", provider=provider.value, cooldown_s=CIRCUIT_BREAKER_COOLDOWN)

    def _note_success(self, provider: LLMProvider) -> None:
        self._breakers.pop(provider, None)

    # Generation

    async def generate(
        self,
        task_category: TaskCategory,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        response_format: str = "text",
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Run a prompt against the providers routed for ``task_category``.

        Args:
            task_category: Selects the provider order
            prompt: User prompt
            system_prompt: Optional system instruction
            temperature: Sampling temperature
            response_format: "json" to have the provider parse JSON output
            timeout: Wall-clock budget for the whole call, including fallbacks

        Returns:
            The provider's response dict, tagged with "provider" and "task_category"

        Raises:
            LLMGatewayError: Every provider failed, or the budget ran out
        """
        budget = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                self._route(task_category, prompt, system_prompt, temperature, response_format),
                timeout=budget,
            )
        except asyncio.TimeoutError as e:
            logger.warning("LLM call exceeded budget", task_category=task_category.value, budget_s=budget)
            raise LLMGatewayError(f"{task_category.value} request timed out after {budget}s") from e

    async def _route(
        self,
        task_category: TaskCategory,
        prompt: str,
        system_prompt: Optional[str],
        temperature: float,
        response_format: str,
    ) -> Dict[str, Any]:
        order = self.routing.get(task_category, [LLMProvider.AZURE_OPENAI])
        log = logger.bind(correlation_id=get_correlation_id(), task_category=task_category.value)
        last_error: Optional[BaseException] = None

        for provider in order:
            if self.is_circuit_open(provider):
                log.info("Provider skipped, circuit open", provider=provider.value)
                continue

            for attempt in (1, 2):
                try:
                    response = await self._client_for(provider).generate(
                        prompt=prompt,
                        system_prompt=system_prompt,
                        temperature=temperature,
                        response_format=response_format,
                    )
                except Exception as e:
                    last_error = e
                    retry = attempt == 1 and is_transient_error(e)
                    log.warning(
                        "Provider call failed",
                        provider=provider.value,
                        attempt=attempt,
                        error_type=type(e).__name__,
                        will_retry=retry,
                        error=str(e),
                    )
                    if retry:
                        await asyncio.sleep(self.transient_retry_delay)
                        continue
                    self._note_failure(provider)
                    break

                self._note_success(provider)
                log.info("Provider call succeeded", provider=provider.value, attempt=attempt)
                response["provider"] = provider.value
                response["task_category"] = task_category.value
                return response

        raise LLMGatewayError(f"All providers failed for {task_category.value}: {last_error}")

    async def health_check(self) -> Dict[str, bool]:
        """Ping each provider that appears in the routing table."""
        routed = sorted({p for order in self.routing.values() for p in order}, key=lambda p: p.value)
        status: Dict[str, bool] = {}
        for provider in routed:
            try:
                status[provider.value] = await self._client_for(provider).health_check()
            except Exception as e:
                logger.warning("Provider health check failed", provider=provider.value, error=str(e))
                status[provider.value] = False
        return status
