"""In-memory feed source and target store.

Used for local runs, examples and tests. The feed honours the same query
semantics a remote feed does: projection, greater-than and equality filters,
and fixed-size pages linked by continuation tokens.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog

from feedsync.models.descriptor import (
    DELETED_ENTITY_SET,
    MODIFIED_FIELD,
    TIMESTAMP_FIELD,
    DeletionRecord,
    FeedPage,
    ModelDescriptor,
)
from feedsync.sync.cancellation import CancellationToken
from feedsync.sync.query import FeedQuery

log = structlog.stdlib.get_logger()


def normalize_key_part(value: Any) -> str:
    """Canonical string form of an identifier value; GUID strings compare case-insensitively."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        try:
            return str(UUID(value))
        except ValueError:
            return value
    return str(value)


def record_key(descriptor: ModelDescriptor, record: Mapping[str, Any]) -> tuple[str, ...]:
    """Identity of a record under the model's identifier fields."""
    return tuple(normalize_key_part(record[field]) for field in descriptor.identifier_fields)


class InMemoryFeedSource:
    """Feed source serving records held in memory, per entity set."""

    def __init__(self, page_size: int = 100):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._page_size: int = page_size
        self._entity_sets: dict[str, list[dict[str, Any]]] = {}
        self.fetch_count: int = 0

    def add_records(self, entity_set: str, records: Iterable[Mapping[str, Any]]) -> None:
        """Append records to an entity set, in feed order."""
        self._entity_sets.setdefault(entity_set, []).extend(dict(r) for r in records)

    def add_deletions(self, deletions: Iterable[DeletionRecord]) -> None:
        """Append entries to the deletion log."""
        self.add_records(DELETED_ENTITY_SET, (d.to_feed_record() for d in deletions))

    def remove_records(
        self, entity_set: str, predicate: Callable[[dict[str, Any]], bool]
    ) -> int:
        """Drop records matching a predicate; returns the number removed."""
        records = self._entity_sets.get(entity_set, [])
        kept = [r for r in records if not predicate(r)]
        self._entity_sets[entity_set] = kept
        return len(records) - len(kept)

    def fetch(self, query: FeedQuery, continuation_token: str | None = None) -> FeedPage:
        """Return one page of matching records, projected to the query's fields."""
        self.fetch_count += 1

        offset = int(continuation_token) if continuation_token else 0
        matching = [r for r in self._entity_sets.get(query.entity_set, []) if query.matches(r)]
        window = matching[offset : offset + self._page_size]
        next_offset = offset + len(window)

        page = FeedPage(
            records=[query.project(r) for r in window],
            continuation_token=str(next_offset) if next_offset < len(matching) else None,
        )

        log.debug(
            "memory_feed_page_served",
            entity_set=query.entity_set,
            offset=offset,
            records=len(page.records),
            has_more=not page.is_last,
        )
        return page

    async def fetch_async(
        self,
        query: FeedQuery,
        continuation_token: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> FeedPage:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self.fetch(query, continuation_token)


class InMemoryTargetController:
    """Per-model view of an InMemorySyncTarget."""

    def __init__(self, descriptor: ModelDescriptor, records: dict[tuple[str, ...], dict[str, Any]]):
        self._descriptor = descriptor
        self._records = records

    def max_timestamp(self) -> int:
        timestamps = [
            r[TIMESTAMP_FIELD] for r in self._records.values() if r.get(TIMESTAMP_FIELD) is not None
        ]
        return max(timestamps, default=0)

    def max_modified(self) -> datetime | None:
        modified = [
            r[MODIFIED_FIELD] for r in self._records.values() if r.get(MODIFIED_FIELD) is not None
        ]
        return max(modified, default=None)

    def upsert(self, records: Sequence[Mapping[str, Any]], fields: Sequence[str] = ()) -> int:
        """Insert or update records; returns how many were inserted or actually changed."""
        written_fields = set(fields) | set(self._descriptor.system_fields) if fields else None
        changed = 0

        for record in records:
            key = record_key(self._descriptor, record)
            incoming = {
                k: v for k, v in record.items() if written_fields is None or k in written_fields
            }
            existing = self._records.get(key)
            merged = {**existing, **incoming} if existing is not None else incoming
            if merged != existing:
                self._records[key] = merged
                changed += 1

        return changed

    def delete(self, keys: Sequence[UUID]) -> int:
        """Delete records whose leading identifier matches one of the keys."""
        wanted = {normalize_key_part(k) for k in keys}
        doomed = [key for key in self._records if key[0] in wanted]
        for key in doomed:
            del self._records[key]
        return len(doomed)

    async def max_timestamp_async(self, cancel_token: CancellationToken | None = None) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self.max_timestamp()

    async def max_modified_async(
        self, cancel_token: CancellationToken | None = None
    ) -> datetime | None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self.max_modified()

    async def upsert_async(
        self,
        records: Sequence[Mapping[str, Any]],
        fields: Sequence[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self.upsert(records, fields)

    async def delete_async(
        self, keys: Sequence[UUID], cancel_token: CancellationToken | None = None
    ) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self.delete(keys)


class InMemorySyncTarget:
    """Target store keeping records in dictionaries, one per model."""

    def __init__(self) -> None:
        self._models: dict[str, dict[tuple[str, ...], dict[str, Any]]] = {}

    def controller_for(self, descriptor: ModelDescriptor) -> InMemoryTargetController:
        return InMemoryTargetController(descriptor, self._models.setdefault(descriptor.name, {}))

    def records(self, model: str) -> list[dict[str, Any]]:
        """Stored records of a model, in insertion order."""
        return list(self._models.get(model, {}).values())
