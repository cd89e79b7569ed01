"""Routing functions for the option generation graph."""
from typing import Literal

from revolucare.orchestrator.state import FAILURE_INSUFFICIENT_DATA, GeneratorState
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)


def route_after_resolve(state: GeneratorState) -> Literal["continue", "failed"]:
    """Stop when any requested document is missing or unavailable."""
    if state.get("failure"):
        return "failed"
    return "continue"


def route_after_collect(state: GeneratorState) -> Literal["continue", "insufficient", "failed"]:
    """
    Decide whether enough documents produced usable data.

    Args:
        state: Current generator state

    Returns:
        Routing decision
    """
    failure = state.get("failure")
    if failure:
        if failure["kind"] == FAILURE_INSUFFICIENT_DATA:
            return "insufficient"
        logger.warning("Option generation stopped", reason=failure["kind"])
        return "failed"
    if not state.get("analyses"):
        return "insufficient"
    return "continue"


def route_after_generate(state: GeneratorState) -> Literal["rank", "insufficient", "failed"]:
    """Rank when at least one strategy produced an option."""
    failure = state.get("failure")
    if failure:
        return "insufficient" if failure["kind"] == FAILURE_INSUFFICIENT_DATA else "failed"
    if not state.get("options"):
        return "insufficient"
    return "rank"
