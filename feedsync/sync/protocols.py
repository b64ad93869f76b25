"""Collaborator contracts consumed by the synchronization core."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from feedsync.models.descriptor import FeedPage, ModelDescriptor
from feedsync.sync.cancellation import CancellationToken
from feedsync.sync.query import FeedQuery


class FeedSource(Protocol):
    """Remote source producing filtered, paginated result pages."""

    def fetch(self, query: FeedQuery, continuation_token: str | None = None) -> FeedPage:
        """Fetch one page of results for the query, starting at the continuation token."""
        ...

    async def fetch_async(
        self,
        query: FeedQuery,
        continuation_token: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> FeedPage:
        """Asynchronous form of fetch."""
        ...


class TargetController(Protocol):
    """Target store operations scoped to one model."""

    def max_timestamp(self) -> int: ...

    def max_modified(self) -> datetime | None: ...

    def upsert(self, records: Sequence[Mapping[str, Any]], fields: Sequence[str] = ()) -> int: ...

    def delete(self, keys: Sequence[UUID]) -> int: ...

    async def max_timestamp_async(self, cancel_token: CancellationToken | None = None) -> int: ...

    async def max_modified_async(
        self, cancel_token: CancellationToken | None = None
    ) -> datetime | None: ...

    async def upsert_async(
        self,
        records: Sequence[Mapping[str, Any]],
        fields: Sequence[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> int: ...

    async def delete_async(
        self, keys: Sequence[UUID], cancel_token: CancellationToken | None = None
    ) -> int: ...


class SyncTarget(Protocol):
    """Local store that hands out per-model controllers."""

    def controller_for(self, descriptor: ModelDescriptor) -> TargetController: ...


class ProgressCallback(Protocol):
    """Receives running (records_read, records_upserted) counts."""

    def __call__(self, records_read: int, records_upserted: int) -> None: ...
