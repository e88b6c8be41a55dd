"""Clinical document sources.

Document content lives in the peripheral clinic systems. The workflow
only needs to fetch one document by id once the patient has approved.
"""

import hashlib
import logging
import mimetypes
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from clinical_access.core.config import settings

logger = logging.getLogger(__name__)

_SAFE_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9._-]+$")


class DocumentSourceError(Exception):
    """Base exception for document source errors."""

    pass


class DocumentNotFound(DocumentSourceError):
    pass


class DocumentIntegrityError(DocumentSourceError):
    """Content does not match its registered hash."""

    pass


@dataclass(frozen=True)
class Document:
    document_id: str
    content: bytes
    content_type: str
    sha256: str

    @property
    def size(self) -> int:
        return len(self.content)


def compute_document_hash(content: bytes) -> str:
    """SHA256 hex digest of document content."""
    return hashlib.sha256(content).hexdigest()


class DocumentSource(ABC):
    """Abstract base class for document sources."""

    @abstractmethod
    async def fetch(self, document_id: str) -> Document:
        """Fetch a document by id.

        Raises:
            DocumentNotFound: If the source has no such document
            DocumentSourceError: If the source cannot serve it
        """
        pass


class LocalDocumentSource(DocumentSource):
    """Documents stored as files named by document id.

    For development and testing. A ``<id>.sha256`` file next to a document,
    when present, holds the registered hash and is checked on every fetch.
    """

    def __init__(self, base_path: str | None = None) -> None:
        self.base_path = Path(base_path or settings.document_storage_path)

    def _path_for(self, document_id: str) -> Path:
        if not _SAFE_DOCUMENT_ID.match(document_id) or document_id.startswith("."):
            raise DocumentNotFound(f"Invalid document id: {document_id}")
        return self.base_path / document_id

    async def fetch(self, document_id: str) -> Document:
        """Read a document from the local filesystem."""
        file_path = self._path_for(document_id)
        if not file_path.is_file():
            raise DocumentNotFound(f"Document not found: {document_id}")

        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise DocumentSourceError(f"Failed to read document {document_id}: {e}") from e

        digest = compute_document_hash(content)
        hash_path = file_path.with_name(file_path.name + ".sha256")
        if hash_path.is_file():
            expected = hash_path.read_text(encoding="utf-8").strip().lower()
            if expected != digest:
                logger.error("Hash mismatch for document %s", document_id)
                raise DocumentIntegrityError(f"Document {document_id} failed integrity check")

        content_type, _ = mimetypes.guess_type(file_path.name)
        return Document(
            document_id=document_id,
            content=content,
            content_type=content_type or "application/octet-stream",
            sha256=digest,
        )

    async def store(self, document_id: str, content: bytes) -> Document:
        """Write a document and its hash file (fixtures and local tooling)."""
        file_path = self._path_for(document_id)
        self.base_path.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)
        digest = compute_document_hash(content)
        file_path.with_name(file_path.name + ".sha256").write_text(digest, encoding="utf-8")
        content_type, _ = mimetypes.guess_type(file_path.name)
        return Document(
            document_id=document_id,
            content=content,
            content_type=content_type or "application/octet-stream",
            sha256=digest,
        )


def get_document_source() -> DocumentSource:
    """Get the configured document source."""
    return LocalDocumentSource(settings.document_storage_path)
