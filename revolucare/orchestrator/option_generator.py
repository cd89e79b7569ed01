"""Care Plan Option Generator - LangGraph pipeline from analyzed documents to ranked options."""
import asyncio
import hashlib
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from langgraph.graph import END, StateGraph

from revolucare.cache.keyed_cache import KeyedCache
from revolucare.exceptions import (
    ConflictError,
    InsufficientDataError,
    UpstreamServiceError,
    ValidationError,
)
from revolucare.models.care_plan import (
    AnalysisMetadata,
    CarePlanOption,
    CarePlanOptionsResponse,
    ExcludedDocument,
    OptionGoal,
    OptionIntervention,
)
from revolucare.models.confidence import ConfidenceSignal
from revolucare.models.document import (
    FACT_CATEGORIES,
    DocumentAnalysis,
    ExtractedFact,
    MedicalExtractionResult,
)
from revolucare.models.enums import (
    AnalysisPriority,
    AnalysisStatus,
    AnalysisType,
    DocumentStatus,
    TaskCategory,
)
from revolucare.orchestrator.document_analysis import DocumentAnalysisOrchestrator
from revolucare.orchestrator.state import (
    FAILURE_DEADLINE,
    FAILURE_INSUFFICIENT_DATA,
    FAILURE_VALIDATION,
    GeneratorState,
    create_initial_state,
    fail,
)
from revolucare.orchestrator.transitions import (
    route_after_collect,
    route_after_generate,
    route_after_resolve,
)
from revolucare.reasoning.confidence_model import ConfidenceModel
from revolucare.reasoning.llm_gateway import LLMGateway
from revolucare.reasoning.prompt_loader import PromptLoader
from revolucare.storage.database import Database
from revolucare.storage.document_repository import DocumentRepository
from revolucare.config.logging_config import get_logger
from revolucare.config.request_context import ensure_correlation_id

logger = get_logger(__name__)

SYSTEM_PROMPT_PATH = "system/care_plan_generation.txt"
NO_ADDITIONAL_CONTEXT = "None provided."


@dataclass(frozen=True)
class CarePlanStrategy:
    """One independent prompt strategy for generating an option."""
    id: str
    label: str
    temperature: float

    @property
    def prompt_path(self) -> str:
        return f"care_plans/{self.id}.txt"


STRATEGIES = (
    CarePlanStrategy("comprehensive", "Comprehensive", 0.2),
    CarePlanStrategy("focused_rehabilitation", "Focused Rehabilitation", 0.4),
    CarePlanStrategy("holistic_wellness", "Holistic Wellness", 0.6),
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_fact_name(name: str) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    return " ".join(_PUNCTUATION_RE.sub(" ", name.casefold()).split())


def merge_facts(analyses: Iterable[DocumentAnalysis]) -> Dict[str, List[ExtractedFact]]:
    """
    Merge medical extraction facts across analyses.

    Facts are de-duplicated per category by normalized name. The
    highest-confidence fact wins; on ties the first seen is kept. Output
    order follows first appearance.
    """
    merged: Dict[str, Dict[str, ExtractedFact]] = {c: {} for c in FACT_CATEGORIES}
    for analysis in analyses:
        if not isinstance(analysis.results, MedicalExtractionResult):
            continue
        for category, facts in analysis.results.facts_by_category().items():
            bucket = merged[category]
            for fact in facts:
                key = normalize_fact_name(fact.name)
                if not key:
                    continue
                current = bucket.get(key)
                if current is None or fact.confidence > current.confidence:
                    bucket[key] = fact
    return {category: list(bucket.values()) for category, bucket in merged.items()}


def request_hash(document_ids: Iterable[str], additional_context: Optional[str]) -> str:
    """Order-independent hash of a generation request, used in option cache keys."""
    payload = json.dumps(
        {"document_ids": sorted(set(document_ids)), "additional_context": additional_context or ""},
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def plan_completeness(
    goals: List[OptionGoal],
    interventions: List[OptionIntervention],
    expected_outcomes: List[str],
) -> float:
    """Structural completeness heuristic in [0, 1]."""
    checks = [
        bool(goals),
        bool(goals) and all(goal.measures for goal in goals),
        bool(interventions),
        bool(expected_outcomes),
    ]
    return sum(checks) / len(checks)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class CarePlanOptionGenerator:
    """
    LangGraph-based generator for care plan options.

    resolve_documents -> collect_analyses -> merge_facts -> generate_options
    -> rank_options, with an insufficient_data terminal node. Never persists
    a care plan; the only durable writes are analyses it triggers.
    """

    def __init__(
        self,
        database: Database,
        orchestrator: DocumentAnalysisOrchestrator,
        gateway: LLMGateway,
        prompt_loader: PromptLoader,
        confidence_model: ConfidenceModel,
        options_cache: KeyedCache[CarePlanOptionsResponse],
        option_count: int = len(STRATEGIES),
        analysis_timeout: float = 60.0,
        default_deadline: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the generator with the workflow graph.

        Args:
            database: Database for document lookups
            orchestrator: Runs medical extraction for documents lacking it
            gateway: LLM gateway used by the strategy prompts
            prompt_loader: Loads strategy and system prompts
            confidence_model: Scores each option
            options_cache: Read-through cache for whole responses
            option_count: Number of strategies to run (1-3)
            analysis_timeout: Upper bound on each per-document wait
            default_deadline: Deadline when the caller gives none
            clock: Monotonic clock
        """
        if not 1 <= option_count <= len(STRATEGIES):
            raise ValueError(f"option_count must be between 1 and {len(STRATEGIES)}")
        self.database = database
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.prompt_loader = prompt_loader
        self.confidence_model = confidence_model
        self.options_cache = options_cache
        self.strategies = STRATEGIES[:option_count]
        self.analysis_timeout = analysis_timeout
        self.default_deadline = default_deadline
        self._clock = clock
        self._compiled = self._build_graph().compile()
        logger.info("Care plan option generator initialized", strategies=[s.id for s in self.strategies])

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph workflow."""
        graph = StateGraph(GeneratorState)

        graph.add_node("resolve_documents", self._resolve_documents_node)
        graph.add_node("collect_analyses", self._collect_analyses_node)
        graph.add_node("merge_facts", self._merge_facts_node)
        graph.add_node("generate_options", self._generate_options_node)
        graph.add_node("rank_options", self._rank_options_node)
        graph.add_node("insufficient_data", self._insufficient_data_node)

        graph.set_entry_point("resolve_documents")

        graph.add_conditional_edges(
            "resolve_documents",
            route_after_resolve,
            {"continue": "collect_analyses", "failed": END},
        )
        graph.add_conditional_edges(
            "collect_analyses",
            route_after_collect,
            {"continue": "merge_facts", "insufficient": "insufficient_data", "failed": END},
        )
        graph.add_edge("merge_facts", "generate_options")
        graph.add_conditional_edges(
            "generate_options",
            route_after_generate,
            {"rank": "rank_options", "insufficient": "insufficient_data", "failed": END},
        )
        graph.add_edge("rank_options", END)
        graph.add_edge("insufficient_data", END)
        return graph

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_options(
        self,
        client_id: str,
        document_ids: List[str],
        additional_context: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> CarePlanOptionsResponse:
        """
        Generate ranked care plan options for a client.

        Args:
            client_id: Client the plan is for
            document_ids: Documents to base the plan on
            additional_context: Free-text guidance from the case manager
            deadline_seconds: Overall deadline; defaults to the configured one

        Returns:
            Options sorted by descending confidence, plus analysis metadata

        Raises:
            ValidationError: Empty request, or missing/unavailable documents
            InsufficientDataError: No usable document or no strategy produced an option
            UpstreamServiceError: Deadline exceeded (code ``deadline_exceeded``)
        """
        ensure_correlation_id()
        if not client_id:
            raise ValidationError("client_id is required", details={"field": "client_id"})
        unique_ids = list(dict.fromkeys(d for d in document_ids if d))
        if not unique_ids:
            raise ValidationError(
                "At least one document is required", details={"field": "document_ids"}
            )

        cache_suffix = request_hash(unique_ids, additional_context)
        cached = await self.options_cache.get(client_id, cache_suffix)
        if cached is not None:
            logger.info("Care plan options served from cache", client_id=client_id)
            return cached

        started_at = self._clock()
        budget = self.default_deadline if deadline_seconds is None else deadline_seconds
        state = create_initial_state(
            client_id=client_id,
            document_ids=unique_ids,
            additional_context=additional_context,
            started_at=started_at,
            deadline=started_at + budget,
        )

        final_state = await self._compiled.ainvoke(state)
        failure = final_state.get("failure")
        if failure:
            self._raise_failure(failure)

        response = CarePlanOptionsResponse(
            client_id=client_id,
            options=final_state["options"],
            analysis_metadata=AnalysisMetadata(
                documents_used=list(final_state["analyses"].keys()),
                documents_excluded=final_state.get("excluded_documents", []),
                strategies=final_state["strategies"],
                failed_strategies=final_state.get("failed_strategies", {}),
                fact_count=sum(len(f) for f in final_state["merged_facts"].values()),
                processing_time_ms=int((self._clock() - started_at) * 1000),
            ),
        )
        await self.options_cache.set(response, client_id, cache_suffix)
        logger.info(
            "Care plan options generated",
            client_id=client_id,
            options=len(response.options),
            documents_used=len(response.analysis_metadata.documents_used),
            documents_excluded=len(response.analysis_metadata.documents_excluded),
        )
        return response

    @staticmethod
    def _raise_failure(failure: Dict[str, Any]) -> None:
        kind = failure["kind"]
        if kind == FAILURE_VALIDATION:
            raise ValidationError(failure["message"], details=failure["details"])
        if kind == FAILURE_DEADLINE:
            raise UpstreamServiceError(
                failure["message"], details=failure["details"], code="deadline_exceeded"
            )
        raise InsufficientDataError(failure["message"], details=failure["details"])

    def _remaining(self, state: GeneratorState) -> float:
        return state["deadline"] - self._clock()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _resolve_documents_node(self, state: GeneratorState) -> Dict[str, Any]:
        """Every requested document must exist and be available."""
        document_ids = state["document_ids"]
        async with self.database.session() as session:
            found = await DocumentRepository(session).find_by_ids(document_ids)

        missing = [d for d in document_ids if d not in found]
        unavailable = [
            d for d in document_ids if d in found and found[d].status != DocumentStatus.AVAILABLE
        ]
        if missing or unavailable:
            logger.info(
                "Option generation rejected",
                client_id=state["client_id"],
                missing=len(missing),
                unavailable=len(unavailable),
            )
            return fail(
                FAILURE_VALIDATION,
                "Some documents are missing or not available",
                missing=missing,
                unavailable=unavailable,
            )

        return {
            "documents": [found[d] for d in document_ids],
            "messages": [f"Resolved {len(document_ids)} document(s)"],
        }

    async def _analysis_for(self, document_id: str, wait_timeout: float) -> DocumentAnalysis:
        """Return a terminal medical extraction analysis for the document."""
        latest = await self.orchestrator.find_latest_completed(
            document_id, AnalysisType.MEDICAL_EXTRACTION
        )
        if latest is not None:
            return latest
        try:
            handle = await self.orchestrator.analyze(
                document_id, AnalysisType.MEDICAL_EXTRACTION, priority=AnalysisPriority.HIGH
            )
            analysis_id = handle.analysis_id
        except ConflictError:
            # Someone else is already analyzing it, wait for theirs
            active = await self.orchestrator.find_active(document_id, AnalysisType.MEDICAL_EXTRACTION)
            if active is None:
                latest = await self.orchestrator.find_latest_completed(
                    document_id, AnalysisType.MEDICAL_EXTRACTION
                )
                if latest is None:
                    raise
                return latest
            analysis_id = active.id
        return await self.orchestrator.wait_for_completion(analysis_id, timeout=wait_timeout)

    async def _collect_analyses_node(self, state: GeneratorState) -> Dict[str, Any]:
        """Ensure each document has a completed medical extraction, excluding the ones that fail."""
        remaining = self._remaining(state)
        if remaining <= 0:
            return fail(FAILURE_DEADLINE, "Deadline exceeded before document analysis", stage="collect_analyses")

        documents = state["documents"]
        wait_timeout = min(self.analysis_timeout, remaining)
        outcomes = await asyncio.gather(
            *(self._analysis_for(doc.id, wait_timeout) for doc in documents),
            return_exceptions=True,
        )

        analyses: Dict[str, DocumentAnalysis] = {}
        excluded: List[ExcludedDocument] = []
        for document, outcome in zip(documents, outcomes):
            reason = None
            if isinstance(outcome, asyncio.TimeoutError):
                reason = "analysis timed out"
            elif isinstance(outcome, BaseException):
                reason = f"analysis error: {outcome}"
            elif outcome.status == AnalysisStatus.FAILED:
                reason = f"analysis failed: {getattr(outcome.results, 'message', 'unknown error')}"
            elif not isinstance(outcome.results, MedicalExtractionResult) or not outcome.results.has_facts():
                reason = "no usable clinical facts"

            if reason is None:
                analyses[document.id] = outcome
            else:
                excluded.append(ExcludedDocument(document_id=document.id, reason=reason))
                logger.info("Document excluded from generation", document_id=document.id, reason=reason)

        update: Dict[str, Any] = {
            "analyses": analyses,
            "excluded_documents": excluded,
            "messages": [f"{len(analyses)} of {len(documents)} document(s) usable"],
        }
        if self._remaining(state) <= 0:
            update.update(
                fail(
                    FAILURE_DEADLINE,
                    "Deadline exceeded while analyzing documents",
                    stage="collect_analyses",
                    documents_used=list(analyses.keys()),
                )
            )
        elif not analyses:
            update.update(
                fail(
                    FAILURE_INSUFFICIENT_DATA,
                    "None of the documents produced usable clinical data",
                    documents_excluded=[e.model_dump() for e in excluded],
                )
            )
        return update

    async def _merge_facts_node(self, state: GeneratorState) -> Dict[str, Any]:
        merged = merge_facts(state["analyses"].values())
        count = sum(len(f) for f in merged.values())
        return {"merged_facts": merged, "messages": [f"Merged {count} unique fact(s)"]}

    async def _run_strategy(
        self,
        strategy: CarePlanStrategy,
        state: GeneratorState,
        fact_confidence: Optional[float],
    ) -> CarePlanOption:
        facts_payload = {
            category: [f.model_dump(exclude={"source_document_id"}) for f in facts]
            for category, facts in state["merged_facts"].items()
        }
        prompt = self.prompt_loader.load(
            strategy.prompt_path,
            {
                "facts": facts_payload,
                "additional_context": state.get("additional_context") or NO_ADDITIONAL_CONTEXT,
            },
        )
        system_prompt = self.prompt_loader.load(SYSTEM_PROMPT_PATH)
        response = await self.gateway.generate(
            task_category=TaskCategory.CARE_PLAN_GENERATION,
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=strategy.temperature,
            response_format="json",
        )
        return self.build_option(strategy, response, fact_confidence)

    def build_option(
        self,
        strategy: CarePlanStrategy,
        response: Dict[str, Any],
        fact_confidence: Optional[float],
    ) -> CarePlanOption:
        """Turn a strategy response into a scored option."""
        goals = []
        for item in _as_list(response.get("goals")):
            if isinstance(item, str):
                item = {"description": item}
            goals.append(
                OptionGoal(
                    description=item["description"],
                    measures=[str(m) for m in _as_list(item.get("measures"))],
                    target_days=item.get("target_days"),
                )
            )
        interventions = []
        for item in _as_list(response.get("interventions")):
            if isinstance(item, str):
                item = {"description": item}
            interventions.append(
                OptionIntervention(**{k: v for k, v in item.items() if k in OptionIntervention.model_fields and v})
            )

        expected_outcomes = [str(o) for o in _as_list(response.get("expected_outcomes"))]

        signals = []
        if response.get("confidence") is not None:
            signals.append(ConfidenceSignal("model_confidence", float(response["confidence"])))
        if fact_confidence is not None:
            signals.append(ConfidenceSignal("fact_confidence", fact_confidence))
        signals.append(
            ConfidenceSignal("plan_completeness", plan_completeness(goals, interventions, expected_outcomes))
        )

        return CarePlanOption(
            strategy=strategy.id,
            title=response.get("title") or f"{strategy.label} Care Plan",
            description=response.get("description") or f"{strategy.label} care plan generated from client documents.",
            confidence_score=self.confidence_model.score(signals),
            goals=goals,
            interventions=interventions,
            expected_outcomes=expected_outcomes,
        )

    async def _generate_options_node(self, state: GeneratorState) -> Dict[str, Any]:
        """Run every strategy concurrently within the remaining deadline."""
        strategy_ids = [s.id for s in self.strategies]
        remaining = self._remaining(state)
        if remaining <= 0:
            return {
                "strategies": strategy_ids,
                **fail(FAILURE_DEADLINE, "Deadline exceeded before option generation", stage="generate_options"),
            }

        all_facts = [f for facts in state["merged_facts"].values() for f in facts]
        fact_confidence = (
            sum(f.confidence for f in all_facts) / len(all_facts) if all_facts else None
        )

        try:
            outcomes = await asyncio.wait_for(
                asyncio.gather(
                    *(self._run_strategy(s, state, fact_confidence) for s in self.strategies),
                    return_exceptions=True,
                ),
                timeout=remaining,
            )
        except asyncio.TimeoutError:
            return {
                "strategies": strategy_ids,
                **fail(FAILURE_DEADLINE, "Deadline exceeded while generating options", stage="generate_options"),
            }

        options: List[CarePlanOption] = []
        failed: Dict[str, str] = {}
        for strategy, outcome in zip(self.strategies, outcomes):
            if isinstance(outcome, BaseException):
                failed[strategy.id] = f"{type(outcome).__name__}: {outcome}"
                logger.warning(
                    "Strategy failed",
                    strategy=strategy.id,
                    error_type=type(outcome).__name__,
                    error=str(outcome),
                )
            else:
                options.append(outcome)

        update: Dict[str, Any] = {
            "strategies": strategy_ids,
            "options": options,
            "failed_strategies": failed,
            "messages": [f"{len(options)} of {len(self.strategies)} strategies produced an option"],
        }
        if not options:
            update.update(
                fail(
                    FAILURE_INSUFFICIENT_DATA,
                    "No care plan option could be generated",
                    failed_strategies=failed,
                )
            )
        return update

    async def _rank_options_node(self, state: GeneratorState) -> Dict[str, Any]:
        """Sort by descending confidence; equal scores keep strategy order."""
        ranked = sorted(state["options"], key=lambda o: -o.confidence_score.score)
        return {"options": ranked, "messages": ["Options ranked"]}

    async def _insufficient_data_node(self, state: GeneratorState) -> Dict[str, Any]:
        logger.warning(
            "Insufficient data for care plan",
            client_id=state.get("client_id"),
            excluded=len(state.get("excluded_documents", [])),
        )
        if state.get("failure"):
            return {"messages": ["Insufficient data"]}
        return fail(FAILURE_INSUFFICIENT_DATA, "None of the documents produced usable clinical data")
