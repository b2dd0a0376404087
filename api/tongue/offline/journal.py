"""Durable append-only journals of pending progress updates.

Backends:
- ``FileProgressJournal``: one JSON-lines file per user; compaction writes a
  temporary file and swaps it in with ``os.replace``
- ``RedisProgressJournal``: one Redis list per user plus an index set of
  users with pending entries

Every journal serializes its own writes per user, so an append racing a
compaction is never lost.
"""

import asyncio
import os
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote, unquote

from pydantic import ValidationError

from tongue.core.locks import KeyedLocks
from tongue.core.logging import get_logger
from tongue.core.redis import offline_journal_index_key, offline_journal_key

from .models import ProgressUpdate


if TYPE_CHECKING:
    import redis.asyncio as redis


logger = get_logger(__name__)

JOURNAL_SUFFIX = ".jsonl"

Transform = Callable[[list[ProgressUpdate]], list[ProgressUpdate]]


class ProgressJournal(Protocol):
    """Durable per-user queue of progress updates."""

    async def append(self, user_id: str, update: ProgressUpdate) -> None: ...

    async def load(self, user_id: str) -> list[ProgressUpdate]: ...

    async def remove(self, user_id: str, entry_ids: Iterable[str]) -> None: ...

    async def mark_failed(self, user_id: str, entry_ids: Iterable[str]) -> None: ...

    async def users(self) -> list[str]: ...


def _without(entry_ids: Iterable[str]) -> Transform:
    doomed = set(entry_ids)
    return lambda updates: [u for u in updates if u.entry_id not in doomed]


def _bump_retries(entry_ids: Iterable[str]) -> Transform:
    failed = set(entry_ids)

    def transform(updates: list[ProgressUpdate]) -> list[ProgressUpdate]:
        return [
            u.model_copy(update={"retry_count": u.retry_count + 1})
            if u.entry_id in failed
            else u
            for u in updates
        ]

    return transform


def _parse_lines(lines: Iterable[str], source: str) -> list[ProgressUpdate]:
    """Parse journal lines, skipping torn or corrupt entries."""
    updates = []
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        try:
            updates.append(ProgressUpdate.model_validate_json(line))
        except ValidationError:
            logger.warning("journal_entry_corrupt", source=source)
    return updates


# ==============================================================================
# File journal
# ==============================================================================


class FileProgressJournal:
    """JSON-lines journal, one file per user under ``directory``."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._locks = KeyedLocks()

    def _path(self, user_id: str) -> Path:
        return self.directory / f"{quote(user_id, safe='')}{JOURNAL_SUFFIX}"

    def _append_sync(self, user_id: str, update: ProgressUpdate) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with self._path(user_id).open("a", encoding="utf-8") as handle:
            handle.write(update.model_dump_json() + "\n")
            handle.flush()
            os.fsync(handle.fileno())

    def _load_sync(self, user_id: str) -> list[ProgressUpdate]:
        path = self._path(user_id)
        if not path.exists():
            return []
        with path.open(encoding="utf-8") as handle:
            return _parse_lines(handle, str(path))

    def _rewrite_sync(self, user_id: str, transform: Transform) -> None:
        path = self._path(user_id)
        updates = transform(self._load_sync(user_id))
        if not updates:
            path.unlink(missing_ok=True)
            return
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            handle.writelines(update.model_dump_json() + "\n" for update in updates)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)

    async def append(self, user_id: str, update: ProgressUpdate) -> None:
        async with self._locks.hold(user_id):
            await asyncio.to_thread(self._append_sync, user_id, update)

    async def load(self, user_id: str) -> list[ProgressUpdate]:
        async with self._locks.hold(user_id):
            return await asyncio.to_thread(self._load_sync, user_id)

    async def remove(self, user_id: str, entry_ids: Iterable[str]) -> None:
        async with self._locks.hold(user_id):
            await asyncio.to_thread(self._rewrite_sync, user_id, _without(entry_ids))

    async def mark_failed(self, user_id: str, entry_ids: Iterable[str]) -> None:
        async with self._locks.hold(user_id):
            await asyncio.to_thread(
                self._rewrite_sync, user_id, _bump_retries(entry_ids)
            )

    async def users(self) -> list[str]:
        """Users with a journal file on disk."""
        if not self.directory.exists():
            return []
        return sorted(
            unquote(path.name[: -len(JOURNAL_SUFFIX)])
            for path in self.directory.glob(f"*{JOURNAL_SUFFIX}")
        )


# ==============================================================================
# Redis journal
# ==============================================================================


class RedisProgressJournal:
    """Redis-list journal (``RPUSH`` to append, ``LRANGE`` to read)."""

    def __init__(self, client: "redis.Redis"):
        self.redis = client
        self._locks = KeyedLocks()

    async def append(self, user_id: str, update: ProgressUpdate) -> None:
        async with self._locks.hold(user_id):
            pipe = self.redis.pipeline()
            pipe.rpush(offline_journal_key(user_id), update.model_dump_json())
            pipe.sadd(offline_journal_index_key(), user_id)
            await pipe.execute()

    async def load(self, user_id: str) -> list[ProgressUpdate]:
        async with self._locks.hold(user_id):
            return await self._load(user_id)

    async def _load(self, user_id: str) -> list[ProgressUpdate]:
        key = offline_journal_key(user_id)
        lines = await self.redis.lrange(key, 0, -1)
        return _parse_lines(lines, key)

    async def _rewrite(self, user_id: str, transform: Transform) -> None:
        key = offline_journal_key(user_id)
        updates = transform(await self._load(user_id))
        pipe = self.redis.pipeline()
        pipe.delete(key)
        if updates:
            pipe.rpush(key, *(update.model_dump_json() for update in updates))
        else:
            pipe.srem(offline_journal_index_key(), user_id)
        await pipe.execute()

    async def remove(self, user_id: str, entry_ids: Iterable[str]) -> None:
        async with self._locks.hold(user_id):
            await self._rewrite(user_id, _without(entry_ids))

    async def mark_failed(self, user_id: str, entry_ids: Iterable[str]) -> None:
        async with self._locks.hold(user_id):
            await self._rewrite(user_id, _bump_retries(entry_ids))

    async def users(self) -> list[str]:
        """Users listed in the journal index."""
        members = await self.redis.smembers(offline_journal_index_key())
        return sorted(members)
