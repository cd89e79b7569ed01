"""Tests for LLM gateway routing, retries and circuit breaking."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from revolucare.models.enums import LLMProvider, TaskCategory
from revolucare.reasoning.llm_gateway import (
    CIRCUIT_BREAKER_COOLDOWN,
    CIRCUIT_BREAKER_THRESHOLD,
    DEFAULT_TASK_MODEL_ROUTING,
    LLMGateway,
    LLMGatewayError,
    is_transient_error,
    load_task_model_routing,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _client(*results):
    client = MagicMock()
    client.generate = AsyncMock(side_effect=list(results))
    client.health_check = AsyncMock(return_value=True)
    return client


def _gateway(settings, clients, clock=None):
    return LLMGateway(
        settings,
        clients=clients,
        transient_retry_delay=0,
        clock=clock or FakeClock(),
    )


class TestErrorClassification:
    def test_connection_error_is_transient(self):
        assert is_transient_error(ConnectionError("reset")) is True

    def test_json_decode_error_is_permanent(self):
        assert is_transient_error(json.JSONDecodeError("bad", "", 0)) is False

    def test_cause_chain_is_inspected(self):
        wrapper = RuntimeError("client failed")
        wrapper.__cause__ = json.JSONDecodeError("bad", "", 0)
        assert is_transient_error(wrapper) is False

    def test_unknown_errors_are_retried(self):
        assert is_transient_error(RuntimeError("boom")) is True


class TestRoutingConfig:
    def test_defaults_without_file(self):
        assert load_task_model_routing(None) == DEFAULT_TASK_MODEL_ROUTING

    def test_file_overrides_known_tasks(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({
            "routing": {
                "text_extraction": ["azure_openai"],
                "not_a_task": ["claude"],
            }
        }))
        routing = load_task_model_routing(path)
        assert routing[TaskCategory.TEXT_EXTRACTION] == [LLMProvider.AZURE_OPENAI]
        assert routing[TaskCategory.MEDICAL_EXTRACTION] == DEFAULT_TASK_MODEL_ROUTING[TaskCategory.MEDICAL_EXTRACTION]

    def test_missing_file_falls_back(self, tmp_path):
        assert load_task_model_routing(tmp_path / "absent.json") == DEFAULT_TASK_MODEL_ROUTING


class TestGenerate:
    @pytest.mark.asyncio
    async def test_primary_provider_result_is_tagged(self, settings):
        claude = _client({"title": "Plan"})
        gateway = _gateway(settings, {LLMProvider.CLAUDE: claude})

        result = await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt", response_format="json")

        assert result["title"] == "Plan"
        assert result["provider"] == "claude"
        assert result["task_category"] == "care_plan_generation"
        claude.generate.assert_awaited_once_with(
            prompt="prompt", system_prompt=None, temperature=0.3, response_format="json"
        )

    @pytest.mark.asyncio
    async def test_transient_error_retried_once(self, settings):
        claude = _client(ConnectionError("reset"), {"ok": True})
        gateway = _gateway(settings, {LLMProvider.CLAUDE: claude})

        result = await gateway.generate(TaskCategory.MEDICAL_EXTRACTION, "prompt")

        assert result["provider"] == "claude"
        assert claude.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_error_falls_back_without_retry(self, settings):
        gemini = _client(json.JSONDecodeError("bad", "", 0))
        azure = _client({"text": "hello"})
        gateway = _gateway(settings, {LLMProvider.GEMINI: gemini, LLMProvider.AZURE_OPENAI: azure})

        result = await gateway.generate(TaskCategory.TEXT_EXTRACTION, "prompt")

        assert result["provider"] == "azure_openai"
        assert gemini.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_all_providers_failing_raises(self, settings):
        claude = _client(json.JSONDecodeError("bad", "", 0))
        azure = _client(ConnectionError("down"), ConnectionError("still down"))
        gateway = _gateway(settings, {LLMProvider.CLAUDE: claude, LLMProvider.AZURE_OPENAI: azure})

        with pytest.raises(LLMGatewayError, match="All providers failed"):
            await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")

    @pytest.mark.asyncio
    async def test_timeout_raises_gateway_error(self, settings):
        async def stall(**kwargs):
            await asyncio.sleep(5)

        claude = MagicMock()
        claude.generate = AsyncMock(side_effect=stall)
        gateway = _gateway(settings, {LLMProvider.CLAUDE: claude})

        with pytest.raises(LLMGatewayError, match="timed out"):
            await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt", timeout=0.05)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_breaker_opens_after_threshold(self, settings):
        failures = [json.JSONDecodeError("bad", "", 0)] * CIRCUIT_BREAKER_THRESHOLD
        claude = _client(*failures)
        azure = _client(*[{"n": i} for i in range(CIRCUIT_BREAKER_THRESHOLD + 1)])
        gateway = _gateway(settings, {LLMProvider.CLAUDE: claude, LLMProvider.AZURE_OPENAI: azure})

        for _ in range(CIRCUIT_BREAKER_THRESHOLD):
            await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")
        assert gateway.is_circuit_open(LLMProvider.CLAUDE)

        result = await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")
        assert result["provider"] == "azure_openai"
        assert claude.generate.await_count == CIRCUIT_BREAKER_THRESHOLD

    @pytest.mark.asyncio
    async def test_breaker_resets_after_cooldown(self, settings):
        clock = FakeClock()
        failures = [json.JSONDecodeError("bad", "", 0)] * CIRCUIT_BREAKER_THRESHOLD
        claude = _client(*failures, {"recovered": True})
        azure = _client(*[{"n": i} for i in range(CIRCUIT_BREAKER_THRESHOLD)])
        gateway = _gateway(
            settings, {LLMProvider.CLAUDE: claude, LLMProvider.AZURE_OPENAI: azure}, clock=clock
        )

        for _ in range(CIRCUIT_BREAKER_THRESHOLD):
            await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")
        assert gateway.is_circuit_open(LLMProvider.CLAUDE)

        clock.now += CIRCUIT_BREAKER_COOLDOWN
        result = await gateway.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")

        assert result["provider"] == "claude"
        assert not gateway.is_circuit_open(LLMProvider.CLAUDE)

    @pytest.mark.asyncio
    async def test_breakers_are_per_instance(self, settings):
        failures = [json.JSONDecodeError("bad", "", 0)] * CIRCUIT_BREAKER_THRESHOLD
        azure = _client(*[{"n": i} for i in range(CIRCUIT_BREAKER_THRESHOLD)])
        tripped = _gateway(settings, {LLMProvider.CLAUDE: _client(*failures), LLMProvider.AZURE_OPENAI: azure})
        fresh = _gateway(settings, {LLMProvider.CLAUDE: _client({"ok": True})})

        for _ in range(CIRCUIT_BREAKER_THRESHOLD):
            await tripped.generate(TaskCategory.CARE_PLAN_GENERATION, "prompt")

        assert tripped.is_circuit_open(LLMProvider.CLAUDE)
        assert not fresh.is_circuit_open(LLMProvider.CLAUDE)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_reports_each_provider(self, settings):
        claude = _client()
        gemini = _client()
        gemini.health_check = AsyncMock(side_effect=ConnectionError("down"))
        azure = _client()
        gateway = _gateway(
            settings,
            {LLMProvider.CLAUDE: claude, LLMProvider.GEMINI: gemini, LLMProvider.AZURE_OPENAI: azure},
        )

        results = await gateway.health_check()

        assert results == {"azure_openai": True, "claude": True, "gemini": False}
