"""Blob storage interface and a local filesystem implementation."""
import asyncio
import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from revolucare.exceptions import NotFoundError, UpstreamServiceError, ValidationError
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class BlobUploadResult:
    """Result of storing a blob."""
    url: str
    etag: str
    size: int


class BlobStorage(ABC):
    """Abstract blob store used for document content."""

    @abstractmethod
    async def upload(self, data: bytes, key: str, content_type: str) -> BlobUploadResult:
        """Store bytes under key."""

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Return the bytes stored under key."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the blob. Returns False if it did not exist."""

    @abstractmethod
    def signed_url(self, key: str, ttl_seconds: int) -> str:
        """Return a time-limited download URL."""


class LocalBlobStorage(BlobStorage):
    """
    Stores blobs as files under a root directory.

    Signed URLs carry an expiry timestamp and an HMAC-SHA256 signature over
    ``key:expires`` so the serving layer can verify them without state.
    """

    def __init__(self, root: Path, signing_secret: str, base_url: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self.base_url = base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        full_path = (self.root / key).resolve()
        try:
            full_path.relative_to(self.root.resolve())
        except ValueError:
            raise ValidationError("Invalid storage key", details={"key": key})
        return full_path

    async def upload(self, data: bytes, key: str, content_type: str) -> BlobUploadResult:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error("Blob upload failed", key=key, error=str(e))
            raise UpstreamServiceError("Document storage failed", code="storage_error") from e

        etag = hashlib.md5(data).hexdigest()
        logger.info("Blob stored", key=key, size=len(data), content_type=content_type)
        return BlobUploadResult(url=f"{self.base_url}/{quote(key)}", etag=etag, size=len(data))

    async def download(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise NotFoundError("Stored document content not found", details={"key": key}) from e
        except OSError as e:
            logger.error("Blob download failed", key=key, error=str(e))
            raise UpstreamServiceError("Document storage failed", code="storage_error") from e

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)

        def _remove() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        try:
            removed = await asyncio.to_thread(_remove)
        except OSError as e:
            logger.error("Blob delete failed", key=key, error=str(e))
            raise UpstreamServiceError("Document storage failed", code="storage_error") from e
        if removed:
            logger.info("Blob deleted", key=key)
        return removed

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        self._path_for(key)
        expires = int(time.time()) + int(ttl_seconds)
        return f"{self.base_url}/{quote(key)}?expires={expires}&signature={self._signature(key, expires)}"

    def verify_signature(self, key: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        """Check a signed URL's parameters."""
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)
