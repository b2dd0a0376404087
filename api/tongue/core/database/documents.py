# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Document store collaborator.

Persistence is modelled as a key-value document service with three
asynchronous, individually fallible operations:

- ``get``: read one document by key
- ``merge``: create-or-merge top-level fields of one document (atomic per
  document)
- ``scan``: read a collection, keeping documents whose fields equal the
  given filters

Two implementations are provided: Cassandra (fields held in a
``map<text, text>`` column so a merge is a single atomic cell update) and an
in-process store for development and tests.
"""

import copy
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol

from tongue.core.logging import get_logger


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


DOCUMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.documents (
    collection TEXT,
    doc_key TEXT,
    fields MAP<TEXT, TEXT>,
    updated_at TIMESTAMP,
    PRIMARY KEY ((collection), doc_key)
) WITH CLUSTERING ORDER BY (doc_key ASC)
"""

DOCUMENT_TABLES_CQL = [DOCUMENTS_TABLE_CQL]


class DocumentStoreError(Exception):
    """Raised when the persistence service cannot complete an operation."""

    def __init__(self, message: str, operation: str = "unknown"):
        self.message = message
        self.operation = operation
        super().__init__(message)


class StoredDocument(NamedTuple):
    """A document returned by ``scan``."""

    key: str
    fields: dict[str, Any]


class DocumentStore(Protocol):
    """Persistence collaborator used by every service."""

    async def get(self, collection: str, key: str) -> dict[str, Any] | None: ...

    async def merge(
        self, collection: str, key: str, fields: Mapping[str, Any]
    ) -> None: ...

    async def scan(
        self, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[StoredDocument]: ...


def _matches(fields: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(fields.get(name) == value for name, value in filters.items())


# ==============================================================================
# In-memory store
# ==============================================================================


class InMemoryDocumentStore:
    """Process-local document store.

    Used when ``document_backend = "memory"`` and throughout the test suite.
    Documents are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        document = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(document) if document is not None else None

    async def merge(
        self, collection: str, key: str, fields: Mapping[str, Any]
    ) -> None:
        documents = self._collections.setdefault(collection, {})
        documents.setdefault(key, {}).update(copy.deepcopy(dict(fields)))

    async def scan(
        self, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[StoredDocument]:
        return [
            StoredDocument(key, copy.deepcopy(fields))
            for key, fields in sorted(self._collections.get(collection, {}).items())
            if _matches(fields, filters)
        ]

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        return len(self._collections.get(collection, {}))


# ==============================================================================
# Cassandra store
# ==============================================================================


class CassandraDocumentStore:
    """Document store on top of the async Cassandra session.

    Each top-level field is JSON-encoded into one entry of the ``fields``
    map. ``fields = fields + ?`` only touches the given entries, which gives
    merge semantics without a read.
    """

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_document = self.session.prepare(f"""
            SELECT fields FROM {self.keyspace}.documents
            WHERE collection = ? AND doc_key = ?
        """)

        self._merge_document = self.session.prepare(f"""
            UPDATE {self.keyspace}.documents
            SET fields = fields + ?, updated_at = ?
            WHERE collection = ? AND doc_key = ?
        """)

        self._scan_collection = self.session.prepare(f"""
            SELECT doc_key, fields FROM {self.keyspace}.documents
            WHERE collection = ?
        """)

    @staticmethod
    def _decode(raw: Mapping[str, str] | None) -> dict[str, Any]:
        return {name: json.loads(value) for name, value in (raw or {}).items()}

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        try:
            result = await self.session.aexecute(self._get_document, [collection, key])
        except Exception as e:
            raise DocumentStoreError(str(e), operation="get") from e
        row = result.one()
        return self._decode(row.fields) if row else None

    async def merge(
        self, collection: str, key: str, fields: Mapping[str, Any]
    ) -> None:
        encoded = {name: json.dumps(value) for name, value in fields.items()}
        try:
            await self.session.aexecute(
                self._merge_document,
                [encoded, datetime.now(UTC), collection, key],
            )
        except Exception as e:
            raise DocumentStoreError(str(e), operation="merge") from e

    async def scan(
        self, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[StoredDocument]:
        try:
            rows = await self.session.aexecute(self._scan_collection, [collection])
        except Exception as e:
            raise DocumentStoreError(str(e), operation="scan") from e
        documents = (StoredDocument(row.doc_key, self._decode(row.fields)) for row in rows)
        return [document for document in documents if _matches(document.fields, filters)]
