"""Tests for the document service."""
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from revolucare.exceptions import InvalidStateError, NotFoundError, UpstreamServiceError, ValidationError
from revolucare.models.document import Document, DocumentAnalysis
from revolucare.models.enums import AnalysisStatus, AnalysisType, DocumentStatus, DocumentType
from revolucare.orchestrator.document_analysis import DocumentAnalysisOrchestrator
from revolucare.reasoning.confidence_model import ConfidenceModel
from revolucare.services.document_service import DocumentService, storage_key_for
from revolucare.storage.document_repository import DocumentRepository

from tests.fakes import FakeExtractionCapability


@pytest.fixture
def document_service(database, blob_storage, analysis_cache):
    return DocumentService(database, blob_storage, analysis_cache, max_upload_size_bytes=1024)


class TestStorageKey:
    def test_name_is_sanitized(self):
        document = Document(owner_id="client-1", name="../My Scan (1).pdf", mime_type="application/pdf")
        assert storage_key_for(document) == f"documents/client-1/{document.id}/My_Scan_1_.pdf"

    def test_empty_name_falls_back(self):
        document = Document(owner_id="client-1", name="...", mime_type="text/plain")
        assert storage_key_for(document).endswith("/document")


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_makes_document_available(self, document_service, blob_storage):
        document = await document_service.upload(
            "client-1", "assessment.txt", b"walks with a walker", "text/plain",
            type=DocumentType.ASSESSMENT, metadata={"source": "intake"},
        )

        assert document.status == DocumentStatus.AVAILABLE
        assert document.size == len(b"walks with a walker")
        assert document.type == DocumentType.ASSESSMENT
        assert document.metadata["source"] == "intake"
        assert "etag" in document.metadata
        assert await blob_storage.download(document.storage_ref) == b"walks with a walker"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,content,mime_type,field",
        [
            ("a.exe", b"MZ", "application/x-msdownload", "mime_type"),
            ("a.txt", b"", "text/plain", "content"),
            ("a.txt", b"x" * 2048, "text/plain", "content"),
            ("  ", b"x", "text/plain", "name"),
        ],
    )
    async def test_upload_validation(self, document_service, name, content, mime_type, field):
        with pytest.raises(ValidationError) as exc_info:
            await document_service.upload("client-1", name, content, mime_type)
        assert field in [e["field"] for e in exc_info.value.details["errors"]]

    @pytest.mark.asyncio
    async def test_unknown_document_type(self, document_service):
        with pytest.raises(ValidationError):
            await document_service.upload("client-1", "a.txt", b"x", "text/plain", type="selfie")

    @pytest.mark.asyncio
    async def test_storage_failure_marks_document_error(self, database, analysis_cache):
        failing = MagicMock()
        failing.upload = AsyncMock(side_effect=UpstreamServiceError("Document storage failed", code="storage_error"))
        service = DocumentService(database, failing, analysis_cache, max_upload_size_bytes=1024)

        with pytest.raises(UpstreamServiceError):
            await service.upload("client-1", "a.txt", b"hello", "text/plain")

        documents = await service.list_documents({"owner_id": "client-1"})
        assert len(documents) == 1
        assert documents[0].status == DocumentStatus.ERROR
        assert documents[0].metadata["upload_error"] == "Document storage failed"


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_and_list(self, document_service):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")
        await document_service.upload("client-2", "b.txt", b"hello", "text/plain")

        assert (await document_service.get_document(uploaded.id)).id == uploaded.id
        listed = await document_service.list_documents({"owner_id": "client-1"})
        assert [d.id for d in listed] == [uploaded.id]

    @pytest.mark.asyncio
    async def test_unknown_document(self, document_service):
        with pytest.raises(NotFoundError):
            await document_service.get_document("missing")

    @pytest.mark.asyncio
    async def test_signed_download_url(self, document_service, blob_storage):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")

        url = await document_service.get_download_url(uploaded.id, ttl_seconds=60)

        query = parse_qs(urlparse(url).query)
        expires = int(query["expires"][0])
        assert url.startswith("http://files.test/documents/client-1/")
        assert blob_storage.verify_signature(uploaded.storage_ref, expires, query["signature"][0])

    @pytest.mark.asyncio
    async def test_download_requires_available_document(self, document_service, make_document):
        document = await make_document(status=DocumentStatus.PROCESSING)
        with pytest.raises(InvalidStateError):
            await document_service.get_download_url(document.id)


class TestUpdateMetadata:
    @pytest.mark.asyncio
    async def test_metadata_is_merged(self, document_service):
        uploaded = await document_service.upload(
            "client-1", "a.txt", b"hello", "text/plain", metadata={"source": "intake", "page_count": 1}
        )

        updated = await document_service.update_metadata(uploaded.id, {"source": "referral", "reviewed": True})

        assert updated.metadata["source"] == "referral"
        assert updated.metadata["reviewed"] is True
        assert updated.metadata["page_count"] == 1
        assert updated.metadata["etag"] == uploaded.metadata["etag"]
        assert (await document_service.get_document(uploaded.id)).metadata == updated.metadata

    @pytest.mark.asyncio
    async def test_only_metadata_changes(self, document_service, blob_storage):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")

        updated = await document_service.update_metadata(uploaded.id, {"label": "knee"})

        assert updated.name == uploaded.name
        assert updated.status == DocumentStatus.AVAILABLE
        assert updated.storage_ref == uploaded.storage_ref
        assert updated.size == uploaded.size
        assert await blob_storage.download(updated.storage_ref) == b"hello"

    @pytest.mark.asyncio
    async def test_unknown_document(self, document_service):
        with pytest.raises(NotFoundError):
            await document_service.update_metadata("missing", {"label": "knee"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("metadata", [["label"], {"etag": "forged"}, {"upload_error": "none"}])
    async def test_rejected_metadata(self, document_service, metadata):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")

        with pytest.raises(ValidationError):
            await document_service.update_metadata(uploaded.id, metadata)
        assert (await document_service.get_document(uploaded.id)).metadata == uploaded.metadata


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_record_and_content(self, document_service, blob_storage):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")

        assert await document_service.delete_document(uploaded.id) is True

        with pytest.raises(NotFoundError):
            await document_service.get_document(uploaded.id)
        with pytest.raises(NotFoundError):
            await blob_storage.download(uploaded.storage_ref)

    @pytest.mark.asyncio
    async def test_delete_blocked_by_active_analysis(self, document_service, database):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")
        async with database.session() as session:
            await DocumentRepository(session).create_analysis(
                DocumentAnalysis(document_id=uploaded.id, analysis_type=AnalysisType.TEXT_EXTRACTION)
            )

        with pytest.raises(InvalidStateError):
            await document_service.delete_document(uploaded.id)
        assert (await document_service.get_document(uploaded.id)).status == DocumentStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_delete_unknown(self, document_service):
        with pytest.raises(NotFoundError):
            await document_service.delete_document("missing")

    @pytest.mark.asyncio
    async def test_delete_drops_cached_analyses(self, document_service, database, analysis_cache, make_document):
        document = await make_document()
        orchestrator = DocumentAnalysisOrchestrator(
            database=database,
            capabilities={AnalysisType.MEDICAL_EXTRACTION: FakeExtractionCapability()},
            confidence_model=ConfidenceModel(),
            analysis_cache=analysis_cache,
        )
        handle = await orchestrator.analyze(document.id, AnalysisType.MEDICAL_EXTRACTION)
        analysis = await orchestrator.wait_for_completion(handle.analysis_id, timeout=5)
        assert analysis.status == AnalysisStatus.COMPLETED
        assert await analysis_cache.get(handle.analysis_id) is not None

        assert await document_service.delete_document(document.id) is True

        assert await analysis_cache.get(handle.analysis_id) is None
        with pytest.raises(NotFoundError):
            await orchestrator.get_analysis(handle.analysis_id)

    @pytest.mark.asyncio
    async def test_blob_failure_does_not_undo_record_delete(self, database, analysis_cache, make_document):
        document = await make_document()
        failing = MagicMock()
        failing.delete = AsyncMock(side_effect=UpstreamServiceError("Document storage failed", code="storage_error"))
        service = DocumentService(database, failing, analysis_cache, max_upload_size_bytes=1024)

        assert await service.delete_document(document.id) is True

        failing.delete.assert_awaited_once_with(document.storage_ref)
        with pytest.raises(NotFoundError):
            await service.get_document(document.id)

    @pytest.mark.asyncio
    async def test_blob_kept_when_record_delete_fails(self, document_service, blob_storage, monkeypatch):
        uploaded = await document_service.upload("client-1", "a.txt", b"hello", "text/plain")
        monkeypatch.setattr(DocumentRepository, "delete", AsyncMock(side_effect=RuntimeError("disk I/O error")))

        with pytest.raises(RuntimeError):
            await document_service.delete_document(uploaded.id)

        assert await blob_storage.download(uploaded.storage_ref) == b"hello"
        assert (await document_service.get_document(uploaded.id)).status == DocumentStatus.AVAILABLE
