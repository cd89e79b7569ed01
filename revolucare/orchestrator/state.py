"""LangGraph state definitions for the care plan option generator."""
from operator import add
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from revolucare.models.care_plan import CarePlanOption, ExcludedDocument
from revolucare.models.document import Document, DocumentAnalysis, ExtractedFact

# Failure kinds recorded in state["failure"]
FAILURE_VALIDATION = "validation"
FAILURE_INSUFFICIENT_DATA = "insufficient_data"
FAILURE_DEADLINE = "deadline_exceeded"


class GeneratorState(TypedDict, total=False):
    """
    State for the option generation graph.
    This state flows through all nodes in the graph.
    """
    # Request
    client_id: str
    document_ids: List[str]
    additional_context: Optional[str]

    # Monotonic timestamps
    started_at: float
    deadline: float

    # Documents and their medical extraction analyses
    documents: List[Document]
    analyses: Dict[str, DocumentAnalysis]  # document_id -> completed analysis
    excluded_documents: Annotated[List[ExcludedDocument], add]  # Accumulates across nodes

    # Merged facts, category -> de-duplicated facts
    merged_facts: Dict[str, List[ExtractedFact]]

    # Generation
    strategies: List[str]
    options: List[CarePlanOption]
    failed_strategies: Dict[str, str]

    # Failure: {"kind", "message", "details"}
    failure: Optional[Dict[str, Any]]
    messages: Annotated[List[str], add]  # Accumulates messages


def create_initial_state(
    client_id: str,
    document_ids: List[str],
    additional_context: Optional[str],
    started_at: float,
    deadline: float,
) -> GeneratorState:
    """Create the initial graph state for one generation request."""
    return GeneratorState(
        client_id=client_id,
        document_ids=list(document_ids),
        additional_context=additional_context,
        started_at=started_at,
        deadline=deadline,
        documents=[],
        analyses={},
        excluded_documents=[],
        merged_facts={},
        strategies=[],
        options=[],
        failed_strategies={},
        failure=None,
        messages=[f"Generating care plan options from {len(document_ids)} document(s)"],
    )


def fail(kind: str, message: str, **details: Any) -> Dict[str, Any]:
    """State update recording a failure."""
    return {
        "failure": {"kind": kind, "message": message, "details": details},
        "messages": [f"Failed: {message}"],
    }
