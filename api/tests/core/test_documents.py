"""Tests for the document store implementations."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tongue.core.database import (
    CassandraDocumentStore,
    DocumentStoreError,
    InMemoryDocumentStore,
)


class TestInMemoryDocumentStore:
    """Tests for the process-local store."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        store = InMemoryDocumentStore()
        assert await store.get("courses", "nope") is None

    @pytest.mark.asyncio
    async def test_merge_only_touches_given_fields(self) -> None:
        """Merging keeps fields that are not part of the update."""
        store = InMemoryDocumentStore()
        await store.merge("user_progress", "u1_c1", {"a": 1, "b": 2})
        await store.merge("user_progress", "u1_c1", {"b": 3})

        assert await store.get("user_progress", "u1_c1") == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self) -> None:
        """Mutating a returned document does not change stored state."""
        store = InMemoryDocumentStore()
        await store.merge("lessons", "k", {"items": [1]})

        document = await store.get("lessons", "k")
        document["items"].append(2)

        assert await store.get("lessons", "k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_scan_filters_on_field_equality(self) -> None:
        store = InMemoryDocumentStore()
        await store.merge("enrollments", "u1_c1", {"user_id": "u1", "course_id": "c1"})
        await store.merge("enrollments", "u1_c2", {"user_id": "u1", "course_id": "c2"})
        await store.merge("enrollments", "u2_c1", {"user_id": "u2", "course_id": "c1"})

        documents = await store.scan("enrollments", {"user_id": "u1"})

        assert [doc.key for doc in documents] == ["u1_c1", "u1_c2"]
        assert store.count("enrollments") == 3


class TestCassandraDocumentStore:
    """Tests for the Cassandra store with a mocked session."""

    @pytest.fixture
    def session(self) -> MagicMock:
        session = MagicMock()
        session.prepare.side_effect = lambda query: query
        session.aexecute = AsyncMock()
        return session

    @pytest.mark.asyncio
    async def test_merge_encodes_fields_as_json(self, session: MagicMock) -> None:
        store = CassandraDocumentStore(session, "tongue")

        await store.merge("courses", "c1", {"title": "Hindi", "lessons": []})

        _statement, params = session.aexecute.call_args.args
        assert params[0] == {"title": '"Hindi"', "lessons": "[]"}
        assert params[2:] == ["courses", "c1"]

    @pytest.mark.asyncio
    async def test_get_decodes_fields(self, session: MagicMock) -> None:
        result = MagicMock()
        result.one.return_value = SimpleNamespace(fields={"watched_seconds": "120.5"})
        session.aexecute.return_value = result
        store = CassandraDocumentStore(session, "tongue")

        assert await store.get("lesson_progress", "k") == {"watched_seconds": 120.5}

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self, session: MagicMock) -> None:
        session.aexecute.side_effect = RuntimeError("no hosts available")
        store = CassandraDocumentStore(session, "tongue")

        with pytest.raises(DocumentStoreError) as exc_info:
            await store.merge("courses", "c1", {"title": "x"})

        assert exc_info.value.operation == "merge"

    @pytest.mark.asyncio
    async def test_scan_applies_filters(self, session: MagicMock) -> None:
        session.aexecute.return_value = [
            SimpleNamespace(doc_key="a", fields={"user_id": '"u1"'}),
            SimpleNamespace(doc_key="b", fields={"user_id": '"u2"'}),
        ]
        store = CassandraDocumentStore(session, "tongue")

        documents = await store.scan("enrollments", {"user_id": "u2"})

        assert [doc.key for doc in documents] == ["b"]
