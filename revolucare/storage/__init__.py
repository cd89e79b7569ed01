"""Storage module for database and blob operations."""
from .database import Database
from .document_repository import DocumentRepository
from .care_plan_repository import CarePlanRepository
from .blob_storage import BlobStorage, BlobUploadResult, LocalBlobStorage

__all__ = [
    "Database",
    "DocumentRepository",
    "CarePlanRepository",
    "BlobStorage",
    "BlobUploadResult",
    "LocalBlobStorage",
]
