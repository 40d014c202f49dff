"""Error taxonomy for the edusync core.

Hierarchy:
- EduSyncError: base for everything raised by the core
- ValidationError: a document violates its collection schema
- NotFoundError: a referenced document does not exist
- DuplicateKeyError: insert collided with an existing id
- MigrationError: a migration step failed while opening the store
- NetworkError: transport failure talking to the class server
- DecodeError: peer payload text could not be decompressed/parsed
- InvalidPayloadError: decoded payload matches no known shape
"""

from __future__ import annotations

from typing import Any


class EduSyncError(Exception):
    """Base exception for all edusync errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ValidationError(EduSyncError):
    """Document does not satisfy its collection schema."""

    def __init__(
        self,
        collection: str,
        errors: list[str],
        doc_id: str | None = None,
    ):
        self.collection = collection
        self.errors = errors
        self.doc_id = doc_id
        super().__init__(
            f"Invalid '{collection}' document: " + "; ".join(errors),
            details={"doc_id": doc_id} if doc_id else None,
        )


class NotFoundError(EduSyncError):
    """Document not found in collection."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"'{collection}' document not found: {doc_id}")


class DuplicateKeyError(EduSyncError):
    """Insert collided with an existing document id."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"'{collection}' document already exists: {doc_id}")


class MigrationError(EduSyncError):
    """Migration step failed; the store must not be opened.

    The only supported recovery is a destructive reset of the store.
    """

    def __init__(
        self,
        collection: str,
        doc_id: str | None,
        step: int,
        reason: str,
    ):
        self.collection = collection
        self.doc_id = doc_id
        self.step = step
        super().__init__(
            f"Migration of '{collection}' to v{step} failed: {reason}",
            details={"doc_id": doc_id},
        )


class NetworkError(EduSyncError):
    """Transport failure talking to the class server."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message, details={"url": url} if url else None)


class DecodeError(EduSyncError):
    """Payload text could not be decompressed into structured data."""


class InvalidPayloadError(EduSyncError):
    """Decoded payload does not match the profile or content shape."""
