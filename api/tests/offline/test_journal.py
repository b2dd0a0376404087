"""Tests for the durable progress journals."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from tongue.offline.journal import FileProgressJournal, RedisProgressJournal
from tongue.offline.models import ProgressUpdate
from tongue.progress.models import LessonProgress


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def update(watched: float, lesson_id: str = "lesson-0") -> ProgressUpdate:
    return ProgressUpdate.from_progress(
        "hindi-101",
        lesson_id,
        LessonProgress(watched_seconds=watched, total_seconds=600, resume_position=watched),
        T0,
    )


class TestFileProgressJournal:
    """Tests for the JSON-lines journal."""

    @pytest.mark.asyncio
    async def test_append_and_load(self, tmp_path) -> None:
        journal = FileProgressJournal(tmp_path)
        first, second = update(10), update(20)

        await journal.append("u1", first)
        await journal.append("u1", second)

        loaded = await journal.load("u1")
        assert [item.entry_id for item in loaded] == [first.entry_id, second.entry_id]
        assert loaded[1].progress.watched_seconds == 20

    @pytest.mark.asyncio
    async def test_survives_restart(self, tmp_path) -> None:
        """A new journal instance over the same directory sees old entries."""
        await FileProgressJournal(tmp_path).append("user/with:odd chars", update(42))

        reopened = FileProgressJournal(tmp_path)

        assert await reopened.users() == ["user/with:odd chars"]
        assert (await reopened.load("user/with:odd chars"))[0].watched_seconds == 42

    @pytest.mark.asyncio
    async def test_remove_compacts_and_deletes_empty_file(self, tmp_path) -> None:
        journal = FileProgressJournal(tmp_path)
        first, second = update(10), update(20)
        await journal.append("u1", first)
        await journal.append("u1", second)

        await journal.remove("u1", [first.entry_id])
        assert [item.entry_id for item in await journal.load("u1")] == [second.entry_id]

        await journal.remove("u1", [second.entry_id])
        assert await journal.load("u1") == []
        assert await journal.users() == []

    @pytest.mark.asyncio
    async def test_mark_failed_increments_retry_count(self, tmp_path) -> None:
        journal = FileProgressJournal(tmp_path)
        entry = update(10)
        await journal.append("u1", entry)

        await journal.mark_failed("u1", [entry.entry_id])
        await journal.mark_failed("u1", [entry.entry_id])

        assert (await journal.load("u1"))[0].retry_count == 2

    @pytest.mark.asyncio
    async def test_corrupt_lines_are_skipped(self, tmp_path) -> None:
        journal = FileProgressJournal(tmp_path)
        await journal.append("u1", update(10))
        with (tmp_path / "u1.jsonl").open("a", encoding="utf-8") as handle:
            handle.write('{"entry_id": "torn"\n')

        loaded = await journal.load("u1")

        assert len(loaded) == 1


class TestRedisProgressJournal:
    """Tests for the Redis journal with a mocked client."""

    @pytest.fixture
    def redis_client(self) -> MagicMock:
        client = MagicMock()
        client.pipeline.return_value.execute = AsyncMock()
        client.lrange = AsyncMock(return_value=[])
        client.smembers = AsyncMock(return_value={"u2", "u1"})
        return client

    @pytest.mark.asyncio
    async def test_append_pushes_and_indexes(self, redis_client: MagicMock) -> None:
        journal = RedisProgressJournal(redis_client)
        entry = update(10)

        await journal.append("u1", entry)

        pipe = redis_client.pipeline.return_value
        pipe.rpush.assert_called_once_with(
            "offline_progress:user:u1", entry.model_dump_json()
        )
        pipe.sadd.assert_called_once_with("offline_progress:users", "u1")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_last_entry_drops_index(self, redis_client: MagicMock) -> None:
        entry = update(10)
        redis_client.lrange.return_value = [entry.model_dump_json()]
        journal = RedisProgressJournal(redis_client)

        await journal.remove("u1", [entry.entry_id])

        pipe = redis_client.pipeline.return_value
        pipe.delete.assert_called_once_with("offline_progress:user:u1")
        pipe.rpush.assert_not_called()
        pipe.srem.assert_called_once_with("offline_progress:users", "u1")

    @pytest.mark.asyncio
    async def test_remove_rewrites_survivors(self, redis_client: MagicMock) -> None:
        keep, drop = update(10), update(20)
        redis_client.lrange.return_value = [keep.model_dump_json(), drop.model_dump_json()]
        journal = RedisProgressJournal(redis_client)

        await journal.remove("u1", [drop.entry_id])

        pipe = redis_client.pipeline.return_value
        pipe.rpush.assert_called_once_with(
            "offline_progress:user:u1", keep.model_dump_json()
        )
        pipe.srem.assert_not_called()

    @pytest.mark.asyncio
    async def test_users_sorted(self, redis_client: MagicMock) -> None:
        assert await RedisProgressJournal(redis_client).users() == ["u1", "u2"]
