"""Document service - upload pipeline, lookups, signed downloads and deletion."""
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from revolucare.cache.keyed_cache import KeyedCache
from revolucare.exceptions import (
    InvalidStateError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from revolucare.models.document import Document, DocumentAnalysis, DocumentFilter
from revolucare.models.enums import DocumentStatus, DocumentType
from revolucare.services.validation import validate_input
from revolucare.storage.blob_storage import BlobStorage
from revolucare.storage.database import Database
from revolucare.storage.document_repository import DocumentRepository
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/tiff",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# Written by the upload pipeline.
RESERVED_METADATA_KEYS = frozenset({"etag", "upload_error"})


def storage_key_for(document: Document) -> str:
    """Blob key for a document: ``documents/<owner>/<id>/<sanitized name>``."""
    base = document.name.replace("\\", "/").rsplit("/", 1)[-1]
    safe = _UNSAFE_NAME_CHARS.sub("_", base).strip("._") or "document"
    return f"documents/{document.owner_id}/{document.id}/{safe}"


class DocumentService:
    """
    Service for document content and records.

    Upload moves a document ``uploading -> processing -> available``, or to
    ``error`` when the blob store fails.
    """

    def __init__(
        self,
        database: Database,
        blob_storage: BlobStorage,
        analysis_cache: KeyedCache[DocumentAnalysis],
        max_upload_size_bytes: int,
        signed_url_ttl_seconds: int = 900,
    ):
        self.database = database
        self.blob_storage = blob_storage
        self.analysis_cache = analysis_cache
        self.max_upload_size_bytes = max_upload_size_bytes
        self.signed_url_ttl_seconds = signed_url_ttl_seconds

    def _validate_upload(self, name: str, content: bytes, mime_type: str) -> None:
        errors = []
        if not name or not name.strip():
            errors.append({"field": "name", "message": "File name is required"})
        if mime_type not in ALLOWED_MIME_TYPES:
            errors.append({"field": "mime_type", "message": f"Unsupported file type: {mime_type}"})
        if not content:
            errors.append({"field": "content", "message": "File is empty"})
        elif len(content) > self.max_upload_size_bytes:
            errors.append({
                "field": "content",
                "message": f"File exceeds the maximum size of {self.max_upload_size_bytes} bytes",
            })
        if errors:
            raise ValidationError("Invalid document upload", details={"errors": errors})

    async def upload(
        self,
        owner_id: str,
        name: str,
        content: bytes,
        mime_type: str,
        type: Union[DocumentType, str] = DocumentType.OTHER,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Document:
        """
        Store a new document.

        Args:
            owner_id: Uploading user
            name: Original file name
            content: File bytes
            mime_type: Declared content type
            type: Document category
            metadata: Free-form metadata kept with the record

        Returns:
            The document in ``available`` status

        Raises:
            ValidationError: Unsupported type, empty or oversized content
            UpstreamServiceError: Blob store failure (document left in ``error``)
        """
        self._validate_upload(name, content, mime_type)
        try:
            doc_type = DocumentType(type)
        except ValueError:
            raise ValidationError(f"Unknown document type: {type}", details={"field": "type"})

        document = Document(
            owner_id=owner_id,
            name=name.strip(),
            type=doc_type,
            mime_type=mime_type,
            size=len(content),
            metadata=dict(metadata or {}),
        )
        document.storage_ref = storage_key_for(document)

        async with self.database.session() as session:
            await DocumentRepository(session).create(document)

        async with self.database.session() as session:
            await DocumentRepository(session).update(document.id, {"status": DocumentStatus.PROCESSING})

        try:
            stored = await self.blob_storage.upload(content, document.storage_ref, mime_type)
        except UpstreamServiceError as e:
            async with self.database.session() as session:
                await DocumentRepository(session).update(
                    document.id,
                    {
                        "status": DocumentStatus.ERROR,
                        "metadata": {**document.metadata, "upload_error": e.message},
                    },
                )
            logger.error("Document upload failed", document_id=document.id, error=e.message)
            raise

        async with self.database.session() as session:
            available = await DocumentRepository(session).update(
                document.id,
                {
                    "status": DocumentStatus.AVAILABLE,
                    "metadata": {**document.metadata, "etag": stored.etag},
                },
            )
        logger.info(
            "Document uploaded",
            document_id=document.id,
            type=doc_type.value,
            size=stored.size,
        )
        return available

    async def get_document(self, document_id: str) -> Document:
        async with self.database.session() as session:
            document = await DocumentRepository(session).find_by_id(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def list_documents(
        self,
        filters: Optional[Union[DocumentFilter, Mapping[str, Any]]] = None,
    ) -> List[Document]:
        filters = validate_input(DocumentFilter, filters or {}, "filter")
        async with self.database.session() as session:
            return await DocumentRepository(session).find_all(filters)

    async def get_download_url(self, document_id: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Return a signed, time-limited download URL.

        Raises:
            NotFoundError: Document does not exist
            InvalidStateError: Document content is not available
        """
        document = await self.get_document(document_id)
        if document.status != DocumentStatus.AVAILABLE or not document.storage_ref:
            raise InvalidStateError(
                f"Document {document_id} is not available for download",
                details={"status": document.status.value},
            )
        return self.blob_storage.signed_url(
            document.storage_ref, ttl_seconds or self.signed_url_ttl_seconds
        )

    async def update_metadata(self, document_id: str, metadata: Mapping[str, Any]) -> Document:
        """
        Merge caller-supplied keys into a document's metadata.

        Only metadata changes; content, status and storage stay as they are.
        The keys written by the upload pipeline cannot be set here.

        Raises:
            ValidationError: Metadata is not a mapping or names a reserved key
            NotFoundError: Document does not exist
        """
        if not isinstance(metadata, Mapping):
            raise ValidationError("Metadata must be an object", details={"field": "metadata"})
        reserved = sorted(RESERVED_METADATA_KEYS.intersection(metadata))
        if reserved:
            raise ValidationError(
                "Metadata keys are managed by the upload pipeline",
                details={"field": "metadata", "keys": reserved},
            )

        async with self.database.session() as session:
            repo = DocumentRepository(session)
            document = await repo.find_by_id(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            updated = await repo.update(document_id, {"metadata": {**document.metadata, **metadata}})
        logger.info("Document metadata updated", document_id=document_id, keys=sorted(metadata))
        return updated

    async def delete_document(self, document_id: str) -> bool:
        """
        Delete a document's record and analyses, then its content.

        The blob goes only after the record delete commits; a failed blob
        delete is logged and leaves an orphaned blob, never a dangling record.

        Raises:
            NotFoundError: Document does not exist
            InvalidStateError: An analysis of the document is still in flight
        """
        async with self.database.session() as session:
            repo = DocumentRepository(session)
            document = await repo.find_by_id(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            if await repo.has_active_analyses(document_id):
                raise InvalidStateError(
                    f"Document {document_id} has an analysis in progress",
                    details={"document_id": document_id},
                )
            analysis_ids = await repo.find_analysis_ids(document_id)
            deleted = await repo.delete(document_id)

        for analysis_id in analysis_ids:
            await self.analysis_cache.invalidate(analysis_id)

        if document.storage_ref:
            try:
                removed = await self.blob_storage.delete(document.storage_ref)
            except Exception as e:
                logger.warning(
                    "Document content could not be deleted",
                    document_id=document_id,
                    storage_ref=document.storage_ref,
                    error=str(e),
                )
            else:
                if not removed:
                    logger.warning("Document content already missing", document_id=document_id)
        return deleted
