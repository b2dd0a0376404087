"""Database connection and document store module."""

from tongue.core.database.documents import (
    CassandraDocumentStore,
    DocumentStore,
    DocumentStoreError,
    InMemoryDocumentStore,
    StoredDocument,
)


__all__ = [
    "CassandraDocumentStore",
    "DocumentStore",
    "DocumentStoreError",
    "InMemoryDocumentStore",
    "StoredDocument",
]
