"""Document Analysis Orchestrator - drives extraction capabilities against stored documents."""
import asyncio
from typing import Any, Dict, Optional

from revolucare.cache.keyed_cache import KeyedCache
from revolucare.exceptions import (
    InvalidStateError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from revolucare.models.document import (
    AnalysisFailure,
    DocumentAnalysis,
    DocumentAnalysisHandle,
)
from revolucare.models.enums import AnalysisPriority, AnalysisStatus, AnalysisType, DocumentStatus
from revolucare.reasoning.confidence_model import ConfidenceModel
from revolucare.reasoning.extraction import ExtractionCapability
from revolucare.storage.database import Database
from revolucare.storage.document_repository import DocumentRepository
from revolucare.config.logging_config import get_logger
from revolucare.config.request_context import ensure_correlation_id

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.5


def _failure_from(error: BaseException, timeout: float) -> AnalysisFailure:
    if isinstance(error, asyncio.TimeoutError):
        return AnalysisFailure(
            message=f"Extraction timed out after {timeout}s",
            error_type="TimeoutError",
            retryable=True,
        )
    return AnalysisFailure(
        message=str(error) or type(error).__name__,
        error_type=type(error).__name__,
        retryable=getattr(error, "retryable", False),
    )


class DocumentAnalysisOrchestrator:
    """
    Creates analysis records and runs the matching extraction capability.

    ``analyze`` registers a pending record and returns a handle at once; the
    extraction runs as a background task (or through ``process_analysis``
    when a job queue delivers it). Capability failures end up as a
    ``failed`` record and are never raised to the ``analyze`` caller.
    """

    def __init__(
        self,
        database: Database,
        capabilities: Dict[AnalysisType, ExtractionCapability],
        confidence_model: ConfidenceModel,
        analysis_cache: KeyedCache[DocumentAnalysis],
        analysis_timeout: float = 60.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """
        Initialize the orchestrator.

        Args:
            database: Database used for document and analysis records
            capabilities: Extraction capability per analysis type
            confidence_model: Aggregates the capability's confidence signals
            analysis_cache: Read-through cache for completed analyses
            analysis_timeout: Wall-clock bound on one extraction
            poll_interval: Store polling interval for analyses run elsewhere
        """
        self.database = database
        self.capabilities = dict(capabilities)
        self.confidence_model = confidence_model
        self.analysis_cache = analysis_cache
        self.analysis_timeout = analysis_timeout
        self.poll_interval = poll_interval
        self._tasks: Dict[str, asyncio.Task] = {}
        logger.info(
            "Document analysis orchestrator initialized",
            capabilities=[t.value for t in self.capabilities],
        )

    async def analyze(
        self,
        document_id: str,
        analysis_type: AnalysisType,
        priority: AnalysisPriority = AnalysisPriority.NORMAL,
        options: Optional[Dict[str, Any]] = None,
    ) -> DocumentAnalysisHandle:
        """
        Register an analysis and dispatch it.

        Raises:
            ValidationError: No capability handles the analysis type
            NotFoundError: Document does not exist
            InvalidStateError: Document is not available
            ConflictError: A non-terminal analysis of the same type exists
        """
        ensure_correlation_id()
        if analysis_type not in self.capabilities:
            raise ValidationError(
                f"Unsupported analysis type: {analysis_type.value}",
                details={"analysis_type": analysis_type.value},
            )

        async with self.database.session() as session:
            repo = DocumentRepository(session)
            document = await repo.find_by_id(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            if document.status != DocumentStatus.AVAILABLE:
                raise InvalidStateError(
                    f"Document {document_id} is not available for analysis",
                    details={"status": document.status.value},
                )
            analysis = await repo.create_analysis(
                DocumentAnalysis(
                    document_id=document_id,
                    analysis_type=analysis_type,
                    priority=priority,
                )
            )

        self._dispatch(analysis.id, options)
        logger.info(
            "Analysis dispatched",
            analysis_id=analysis.id,
            document_id=document_id,
            analysis_type=analysis_type.value,
            priority=priority.value,
        )
        return DocumentAnalysisHandle(
            analysis_id=analysis.id,
            document_id=analysis.document_id,
            analysis_type=analysis.analysis_type,
            status=analysis.status,
            created_at=analysis.created_at,
        )

    def _dispatch(self, analysis_id: str, options: Optional[Dict[str, Any]]) -> None:
        task = asyncio.create_task(self.process_analysis(analysis_id, options))
        self._tasks[analysis_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(analysis_id, None))

    async def process_analysis(
        self,
        analysis_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> DocumentAnalysis:
        """
        Run one analysis to its terminal state.

        Safe to call for an analysis that is already processing elsewhere or
        already terminal: the record is returned unchanged.
        """
        async with self.database.session() as session:
            repo = DocumentRepository(session)
            analysis = await repo.find_analysis_by_id(analysis_id)
            if analysis is None:
                raise NotFoundError(f"Analysis {analysis_id} not found")
            if analysis.status.is_terminal:
                return analysis
            claimed = await repo.mark_analysis_processing(analysis_id)
            document = await repo.find_by_id(analysis.document_id)

        if not claimed:
            logger.info("Analysis already claimed by another worker", analysis_id=analysis_id)
            return analysis

        confidence = None
        model_type = None
        processing_time_ms = None
        try:
            if document is None:
                raise UpstreamServiceError("Document no longer exists", retryable=False)
            capability = self.capabilities[analysis.analysis_type]
            output = await asyncio.wait_for(
                capability.extract(document, analysis.analysis_type, options),
                timeout=self.analysis_timeout,
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._record_cancellation(analysis_id))
            raise
        except Exception as e:
            status = AnalysisStatus.FAILED
            results = _failure_from(e, self.analysis_timeout)
            logger.warning(
                "Analysis failed",
                analysis_id=analysis_id,
                analysis_type=analysis.analysis_type.value,
                error_type=results.error_type,
                error=results.message,
            )
        else:
            status = AnalysisStatus.COMPLETED
            results = output.results
            confidence = self.confidence_model.score(output.confidence_signals)
            model_type = output.model_type
            processing_time_ms = output.processing_time_ms

        generation = self.analysis_cache.generation
        async with self.database.session() as session:
            repo = DocumentRepository(session)
            await repo.complete_analysis(
                analysis_id,
                status=status,
                results=results,
                confidence=confidence,
                processing_time_ms=processing_time_ms,
                model_type=model_type,
            )
            final = await repo.find_analysis_by_id(analysis_id)

        if final.status == AnalysisStatus.COMPLETED:
            await self.analysis_cache.set_unless_invalidated(final, generation, analysis_id)
        return final

    async def _record_cancellation(self, analysis_id: str) -> None:
        """Fail an analysis whose task was cancelled, releasing its in-flight slot."""
        failure = AnalysisFailure(
            message="Analysis was cancelled before it finished",
            error_type="CancelledError",
            retryable=True,
        )
        async with self.database.session() as session:
            await DocumentRepository(session).complete_analysis(
                analysis_id, status=AnalysisStatus.FAILED, results=failure
            )
        logger.warning("Analysis cancelled", analysis_id=analysis_id)

    async def get_analysis(self, analysis_id: str) -> DocumentAnalysis:
        """
        Fetch an analysis. Completed analyses are served from the cache.

        Raises:
            NotFoundError: If the analysis does not exist
        """
        cached = await self.analysis_cache.get(analysis_id)
        if cached is not None:
            return cached

        generation = self.analysis_cache.generation
        async with self.database.session() as session:
            analysis = await DocumentRepository(session).find_analysis_by_id(analysis_id)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")
        if analysis.status == AnalysisStatus.COMPLETED:
            await self.analysis_cache.set_unless_invalidated(analysis, generation, analysis_id)
        return analysis

    async def wait_for_completion(
        self,
        analysis_id: str,
        timeout: Optional[float] = None,
    ) -> DocumentAnalysis:
        """
        Wait until the analysis is terminal and return it.

        The underlying work is not cancelled when the wait times out.

        Raises:
            asyncio.TimeoutError: If the analysis is still running after ``timeout``
            NotFoundError: If the analysis does not exist
        """

        async def _wait() -> DocumentAnalysis:
            task = self._tasks.get(analysis_id)
            if task is not None:
                return await asyncio.shield(task)
            while True:
                analysis = await self.get_analysis(analysis_id)
                if analysis.status.is_terminal:
                    return analysis
                await asyncio.sleep(self.poll_interval)

        return await asyncio.wait_for(_wait(), timeout=timeout)

    async def find_latest_completed(
        self,
        document_id: str,
        analysis_type: AnalysisType,
    ) -> Optional[DocumentAnalysis]:
        async with self.database.session() as session:
            return await DocumentRepository(session).find_latest_completed_analysis(
                document_id, analysis_type
            )

    async def find_active(
        self,
        document_id: str,
        analysis_type: AnalysisType,
    ) -> Optional[DocumentAnalysis]:
        async with self.database.session() as session:
            return await DocumentRepository(session).find_active_analysis(document_id, analysis_type)

    async def drain(self) -> None:
        """Wait for every in-process analysis task to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
