"""Document analysis orchestration and LangGraph option generation."""
from .state import GeneratorState, create_initial_state
from .document_analysis import DocumentAnalysisOrchestrator
from .option_generator import CarePlanOptionGenerator, CarePlanStrategy, STRATEGIES, merge_facts

__all__ = [
    "GeneratorState",
    "create_initial_state",
    "DocumentAnalysisOrchestrator",
    "CarePlanOptionGenerator",
    "CarePlanStrategy",
    "STRATEGIES",
    "merge_facts",
]
