"""Pytest configuration and fixtures."""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

from revolucare.cache import (
    CARE_PLAN_NAMESPACE,
    CARE_PLAN_OPTIONS_NAMESPACE,
    CLIENT_CARE_PLANS_NAMESPACE,
    DOCUMENT_ANALYSIS_NAMESPACE,
    KeyedCache,
    MemoryCache,
)
from revolucare.config.settings import Settings
from revolucare.models.care_plan import CarePlan, CarePlanOptionsResponse, CarePlanPage
from revolucare.models.document import Document, DocumentAnalysis
from revolucare.models.enums import DocumentStatus, DocumentType
from revolucare.services.care_plan_service import CarePlanService
from revolucare.services.notification_service import InMemoryEventPublisher, NotificationService
from revolucare.storage.blob_storage import LocalBlobStorage
from revolucare.storage.database import Database
from revolucare.storage.document_repository import DocumentRepository

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "revolucare" / "prompts"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["GEMINI_API_KEY"] = "test-gemini-key"
    os.environ["AZURE_OPENAI_API_KEY"] = "test-azure-key"
    os.environ["AZURE_OPENAI_ENDPOINT"] = "https://test.openai.azure.com"
    os.environ.pop("LANGFUSE_PUBLIC_KEY", None)
    os.environ.pop("LANGFUSE_SECRET_KEY", None)
    os.environ.pop("REDIS_URL", None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'revolucare-test.db'}",
        blob_storage_path=tmp_path / "blobs",
        blob_signing_secret="test-secret",
        blob_base_url="http://files.test",
        analysis_timeout_seconds=5.0,
        generation_deadline_seconds=10.0,
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """File-backed SQLite so concurrent sessions use separate connections."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'revolucare-test.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def notifications(publisher) -> NotificationService:
    return NotificationService(publisher)


@pytest.fixture
def blob_storage(tmp_path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "blobs", "test-secret", "http://files.test")


@pytest.fixture
def plan_cache(memory_cache) -> KeyedCache:
    return KeyedCache(memory_cache, CARE_PLAN_NAMESPACE, CarePlan, 3600)


@pytest.fixture
def list_cache(memory_cache) -> KeyedCache:
    return KeyedCache(memory_cache, CLIENT_CARE_PLANS_NAMESPACE, CarePlanPage, 3600)


@pytest.fixture
def analysis_cache(memory_cache) -> KeyedCache:
    return KeyedCache(memory_cache, DOCUMENT_ANALYSIS_NAMESPACE, DocumentAnalysis, 86400)


@pytest.fixture
def options_cache(memory_cache) -> KeyedCache:
    return KeyedCache(memory_cache, CARE_PLAN_OPTIONS_NAMESPACE, CarePlanOptionsResponse, 3600)


@pytest.fixture
def care_plan_service(database, plan_cache, list_cache, notifications) -> CarePlanService:
    return CarePlanService(database, plan_cache, list_cache, notifications)


@pytest.fixture
def make_document(database, blob_storage):
    """Factory that stores content and inserts a document record."""

    async def _make(
        content: bytes = b"Client has hypertension and uses a walker.",
        status: DocumentStatus = DocumentStatus.AVAILABLE,
        owner_id: str = "client-1",
        name: str = "assessment.txt",
        mime_type: str = "text/plain",
        type: DocumentType = DocumentType.ASSESSMENT,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Document:
        document = Document(
            owner_id=owner_id,
            name=name,
            type=type,
            mime_type=mime_type,
            size=len(content),
            status=status,
            metadata=metadata or {},
        )
        document.storage_ref = f"documents/{owner_id}/{document.id}/{name}"
        await blob_storage.upload(content, document.storage_ref, mime_type)
        async with database.session() as session:
            return await DocumentRepository(session).create(document)

    return _make


def care_plan_request(client_id: str = "client-1", **overrides: Any) -> Dict[str, Any]:
    """A valid create request; keyword overrides replace top-level fields."""
    request = {
        "client_id": client_id,
        "title": "Mobility Plan",
        "description": "Improve client mobility over 90 days",
        "goals": [
            {"description": "Walk 500m unaided", "measures": ["distance walked"]},
        ],
        "interventions": [
            {
                "description": "Physical therapy",
                "frequency": "2x weekly",
                "duration": "12 weeks",
                "responsible_party": "PT",
            },
        ],
    }
    request.update(overrides)
    return request
