"""Repository for documents and their analysis records."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from revolucare.exceptions import ConflictError
from revolucare.models.confidence import ConfidenceScore
from revolucare.models.document import (
    AnalysisResults,
    Document,
    DocumentAnalysis,
    DocumentFilter,
    analysis_results_adapter,
)
from revolucare.models.enums import AnalysisStatus, AnalysisType
from revolucare.storage.contention import is_write_contention
from revolucare.storage.models import DocumentModel, DocumentAnalysisModel
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

_NON_TERMINAL = (AnalysisStatus.PENDING.value, AnalysisStatus.PROCESSING.value)


def active_key_for(document_id: str, analysis_type: AnalysisType) -> str:
    """Key that is unique among in-flight analyses."""
    return f"{document_id}:{analysis_type.value}"


class DocumentRepository:
    """Repository for document and document analysis database operations."""

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create(self, document: Document) -> Document:
        """Persist a new document record."""
        model = DocumentModel(
            id=document.id,
            owner_id=document.owner_id,
            name=document.name,
            type=document.type.value,
            mime_type=document.mime_type,
            size=document.size,
            storage_ref=document.storage_ref,
            status=document.status.value,
            metadata_json=document.metadata,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        logger.info("Document created", document_id=model.id, type=model.type)
        return self._to_document(model)

    async def find_by_id(self, document_id: str) -> Optional[Document]:
        result = await self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.id == document_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_document(model) if model else None

    async def find_by_ids(self, document_ids: List[str]) -> Dict[str, Document]:
        """Load several documents at once, keyed by id."""
        if not document_ids:
            return {}
        result = await self.session.execute(
            select(DocumentModel).where(DocumentModel.id.in_(document_ids))
        )
        return {m.id: self._to_document(m) for m in result.scalars().all()}

    async def update(self, document_id: str, updates: Dict[str, Any]) -> Optional[Document]:
        """
        Update document columns.

        Args:
            document_id: Document ID
            updates: Column values; enum values are stored by value

        Returns:
            Updated document, or None if absent
        """
        values = {}
        for key, value in updates.items():
            column = "metadata_json" if key == "metadata" else key
            values[column] = getattr(value, "value", value)
        values["updated_at"] = datetime.now(timezone.utc)

        result = await self.session.execute(
            update(DocumentModel)
            .where(DocumentModel.id == document_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        await self.session.flush()
        return await self.find_by_id(document_id)

    async def delete(self, document_id: str) -> bool:
        """Delete a document and every analysis recorded against it."""
        await self.session.execute(
            delete(DocumentAnalysisModel).where(DocumentAnalysisModel.document_id == document_id)
        )
        result = await self.session.execute(
            delete(DocumentModel).where(DocumentModel.id == document_id)
        )
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Document deleted", document_id=document_id)
        return deleted

    async def find_all(self, filter: Optional[DocumentFilter] = None) -> List[Document]:
        filter = filter or DocumentFilter()
        query = select(DocumentModel)
        if filter.owner_id:
            query = query.where(DocumentModel.owner_id == filter.owner_id)
        if filter.type:
            query = query.where(DocumentModel.type == filter.type.value)
        if filter.status:
            query = query.where(DocumentModel.status == filter.status.value)
        query = query.order_by(DocumentModel.created_at.desc()).limit(filter.limit).offset(filter.offset)

        result = await self.session.execute(query)
        return [self._to_document(m) for m in result.scalars().all()]

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def create_analysis(self, analysis: DocumentAnalysis) -> DocumentAnalysis:
        """
        Insert a pending analysis.

        Raises:
            ConflictError: If a non-terminal analysis of the same type exists
        """
        model = DocumentAnalysisModel(
            id=analysis.id,
            document_id=analysis.document_id,
            analysis_type=analysis.analysis_type.value,
            status=analysis.status.value,
            priority=analysis.priority.value,
            active_key=active_key_for(analysis.document_id, analysis.analysis_type),
            created_at=analysis.created_at,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"An analysis of type {analysis.analysis_type.value} is already in progress for this document",
                details={"document_id": analysis.document_id, "analysis_type": analysis.analysis_type.value},
            ) from e
        except OperationalError as e:
            if not is_write_contention(e):
                raise
            raise ConflictError(
                "A concurrent analysis request is being registered for this document",
                details={"document_id": analysis.document_id, "analysis_type": analysis.analysis_type.value},
            ) from e

        logger.info(
            "Analysis created",
            analysis_id=model.id,
            document_id=model.document_id,
            analysis_type=model.analysis_type,
        )
        return self._to_analysis(model)

    async def find_analysis_by_id(self, analysis_id: str) -> Optional[DocumentAnalysis]:
        result = await self.session.execute(
            select(DocumentAnalysisModel)
            .where(DocumentAnalysisModel.id == analysis_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_analysis(model) if model else None

    async def find_active_analysis(
        self,
        document_id: str,
        analysis_type: AnalysisType,
    ) -> Optional[DocumentAnalysis]:
        """Return the in-flight analysis for the pair, if any."""
        result = await self.session.execute(
            select(DocumentAnalysisModel).where(
                DocumentAnalysisModel.active_key == active_key_for(document_id, analysis_type)
            )
        )
        model = result.scalar_one_or_none()
        return self._to_analysis(model) if model else None

    async def find_analysis_ids(self, document_id: str) -> List[str]:
        result = await self.session.execute(
            select(DocumentAnalysisModel.id).where(DocumentAnalysisModel.document_id == document_id)
        )
        return list(result.scalars().all())

    async def has_active_analyses(self, document_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(DocumentAnalysisModel.id))
            .where(DocumentAnalysisModel.document_id == document_id)
            .where(DocumentAnalysisModel.status.in_(_NON_TERMINAL))
        )
        return result.scalar_one() > 0

    async def find_latest_completed_analysis(
        self,
        document_id: str,
        analysis_type: AnalysisType,
    ) -> Optional[DocumentAnalysis]:
        result = await self.session.execute(
            select(DocumentAnalysisModel)
            .where(DocumentAnalysisModel.document_id == document_id)
            .where(DocumentAnalysisModel.analysis_type == analysis_type.value)
            .where(DocumentAnalysisModel.status == AnalysisStatus.COMPLETED.value)
            .order_by(DocumentAnalysisModel.completed_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_analysis(model) if model else None

    async def mark_analysis_processing(self, analysis_id: str) -> bool:
        """Move a pending analysis to processing. False if it was not pending."""
        result = await self.session.execute(
            update(DocumentAnalysisModel)
            .where(DocumentAnalysisModel.id == analysis_id)
            .where(DocumentAnalysisModel.status == AnalysisStatus.PENDING.value)
            .values(status=AnalysisStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def complete_analysis(
        self,
        analysis_id: str,
        status: AnalysisStatus,
        results: AnalysisResults,
        confidence: Optional[ConfidenceScore] = None,
        processing_time_ms: Optional[int] = None,
        model_type: Optional[str] = None,
    ) -> bool:
        """
        Write the terminal state of an analysis.

        Only succeeds while the record is non-terminal, so the terminal
        state is written exactly once.

        Returns:
            True if this call performed the transition
        """
        if not status.is_terminal:
            raise ValueError(f"complete_analysis requires a terminal status, got {status.value}")

        result = await self.session.execute(
            update(DocumentAnalysisModel)
            .where(DocumentAnalysisModel.id == analysis_id)
            .where(DocumentAnalysisModel.status.in_(_NON_TERMINAL))
            .values(
                status=status.value,
                results=analysis_results_adapter.dump_python(results, mode="json"),
                confidence=confidence.model_dump(mode="json") if confidence else None,
                processing_time_ms=processing_time_ms,
                model_type=model_type,
                completed_at=datetime.now(timezone.utc),
                active_key=None,
            )
            .execution_options(synchronize_session=False)
        )
        transitioned = result.rowcount == 1
        if transitioned:
            logger.info("Analysis completed", analysis_id=analysis_id, status=status.value)
        else:
            logger.warning("Analysis already terminal, completion ignored", analysis_id=analysis_id)
        return transitioned

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_document(model: DocumentModel) -> Document:
        return Document.model_validate(model.to_dict())

    @staticmethod
    def _to_analysis(model: DocumentAnalysisModel) -> DocumentAnalysis:
        data = model.to_dict()
        if data["results"] is not None:
            data["results"] = analysis_results_adapter.validate_python(data["results"])
        return DocumentAnalysis.model_validate(data)
