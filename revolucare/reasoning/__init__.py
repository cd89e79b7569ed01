"""Reasoning and LLM integration module."""
from .prompt_loader import PromptLoader
from .llm_gateway import LLMGateway, LLMGatewayError, TaskCategory
from .claude_client import ClaudeClient
from .gemini_client import GeminiClient
from .openai_client import AzureOpenAIClient
from .confidence_model import ConfidenceModel
from .extraction import ExtractionCapability, LLMExtractionCapability

__all__ = [
    "PromptLoader",
    "LLMGateway",
    "LLMGatewayError",
    "TaskCategory",
    "ClaudeClient",
    "GeminiClient",
    "AzureOpenAIClient",
    "ConfidenceModel",
    "ExtractionCapability",
    "LLMExtractionCapability",
]
