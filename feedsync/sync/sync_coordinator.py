"""Synchronization coordinator for incremental feed-to-store runs."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar
from uuid import UUID

import structlog
from structlog.contextvars import bound_contextvars

from feedsync.models.descriptor import (
    DELETED_KEY_FIELD,
    EndpointMode,
    ModelDescriptor,
    TimestampWatermark,
    Watermark,
)
from feedsync.sync.cancellation import CancellationToken, SyncCancelled
from feedsync.sync.classifier import classify_endpoint
from feedsync.sync.deduplicator import Deduplicator
from feedsync.sync.errors import ConfigurationError, FeedSyncError, TransportError
from feedsync.sync.models import RunCounters, RunState, SyncResult
from feedsync.sync.protocols import FeedSource, ProgressCallback, SyncTarget, TargetController
from feedsync.sync.query import FeedQuery, deletion_query, prepare_for_sync
from feedsync.sync.registry import ModelRegistry
from feedsync.sync.watermark import WatermarkResolver

log = structlog.stdlib.get_logger()

T = TypeVar("T")


class SyncCoordinator:
    """Runs incremental synchronizations of registered models into a target store.

    A run classifies the model's endpoint, reads the watermark once, pages
    through the feed applying each page, and finally applies deletions
    recorded since the same watermark. Transport failures abort the run and
    propagate; cancellation (async form only) returns the partial result.
    """

    def __init__(self, feed: FeedSource, registry: ModelRegistry | None = None):
        """
        Initialize sync coordinator.

        Args:
            feed: Remote feed to read pages and the deletion log from
            registry: Registry used to resolve model names to descriptors
        """
        self._feed: FeedSource = feed
        self._registry: ModelRegistry = registry if registry is not None else ModelRegistry()
        self._watermark_resolver: WatermarkResolver = WatermarkResolver()

        log.info("sync_coordinator_initialized", models=self._registry.names())

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def synchronize(
        self,
        model: str | ModelDescriptor,
        target: SyncTarget,
        fields: Sequence[str] = (),
        progress: ProgressCallback | None = None,
    ) -> SyncResult:
        """
        Synchronize one model into the target store.

        Args:
            model: Registered model name or its descriptor
            target: Target store
            fields: Fields written on upsert; empty writes every projected field
            progress: Optional callback receiving (records_read, records_upserted)

        Returns:
            SyncResult with the run's counters

        Raises:
            ConfigurationError: If the model is unknown or its metadata is inconsistent
            TransportError: If a feed or store call fails
        """
        descriptor, mode, controller, counters = self._start(model, target)
        query = self._base_query(descriptor, fields)

        with bound_contextvars(model=descriptor.name, mode=mode.value):
            try:
                # Read the watermark once for the whole run
                watermark = self._call(
                    "resolve_watermark",
                    descriptor,
                    self._watermark_resolver.resolve,
                    descriptor,
                    mode,
                    controller,
                )
                counters.state = RunState.WATERMARK_RESOLVED
                prepare_for_sync(query, descriptor, mode, watermark)

                # Apply changed records page by page
                self._paginate(descriptor, mode, query, controller, fields, counters, progress)

                # Remove records deleted since the same watermark
                self._reconcile_deletions(descriptor, mode, watermark, controller, counters)
            except FeedSyncError as e:
                log.error(
                    "sync_failed", model=descriptor.name, state=counters.state.value, error=str(e)
                )
                raise

            return self._finish(counters)

    async def synchronize_async(
        self,
        model: str | ModelDescriptor,
        target: SyncTarget,
        fields: Sequence[str] = (),
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SyncResult:
        """
        Asynchronous form of synchronize.

        Cancellation is checked before the watermark query, before every page
        fetch and upsert, and before the deletion fetch and delete. A
        cancelled run returns the counters accumulated so far with
        ``cancelled=True``.
        """
        cancel_token = cancel_token if cancel_token is not None else CancellationToken()
        descriptor, mode, controller, counters = self._start(model, target)
        query = self._base_query(descriptor, fields)

        with bound_contextvars(model=descriptor.name, mode=mode.value):
            try:
                if cancel_token.cancelled:
                    return self._cancelled(counters)

                # Read the watermark once for the whole run
                watermark = await self._call_async(
                    "resolve_watermark",
                    descriptor,
                    self._watermark_resolver.resolve_async(descriptor, mode, controller, cancel_token),
                )
                counters.state = RunState.WATERMARK_RESOLVED
                prepare_for_sync(query, descriptor, mode, watermark)

                # Apply changed records page by page, then deletions
                completed = await self._paginate_async(
                    descriptor, mode, query, controller, fields, counters, progress, cancel_token
                )
                if completed:
                    completed = await self._reconcile_deletions_async(
                        descriptor, mode, watermark, controller, counters, cancel_token
                    )
                if not completed:
                    return self._cancelled(counters)
            except SyncCancelled:
                return self._cancelled(counters)
            except FeedSyncError as e:
                log.error(
                    "sync_failed", model=descriptor.name, state=counters.state.value, error=str(e)
                )
                raise

            return self._finish(counters)

    async def synchronize_many_async(
        self,
        models: Iterable[str | ModelDescriptor],
        target: SyncTarget,
        fields_by_model: Mapping[str, Sequence[str]] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[SyncResult | Exception]:
        """
        Synchronize several models concurrently.

        Each model runs sequentially on its own; runs for different models
        are not ordered relative to each other. A failing run, including one
        for an unknown model name, does not stop the others.

        Returns:
            For each model in input order, its SyncResult or the exception that aborted it
        """
        fields_by_model = fields_by_model or {}

        outcomes = await asyncio.gather(
            *(
                self.synchronize_async(
                    model,
                    target,
                    fields=fields_by_model.get(model if isinstance(model, str) else model.name, ()),
                    cancel_token=cancel_token,
                )
                for model in models
            ),
            return_exceptions=True,
        )

        results: list[SyncResult | Exception] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            results.append(outcome)
        return results

    def _start(
        self, model: str | ModelDescriptor, target: SyncTarget
    ) -> tuple[ModelDescriptor, EndpointMode, TargetController, RunCounters]:
        descriptor = self._registry.resolve(model)
        if not descriptor.identifier_fields:
            raise ConfigurationError(f"Model {descriptor.name} declares no identifier field")

        mode = classify_endpoint(descriptor)
        controller = target.controller_for(descriptor)

        log.info(
            "sync_started",
            model=descriptor.name,
            entity_set=descriptor.entity_set,
            mode=mode.value,
        )
        return descriptor, mode, controller, RunCounters(descriptor.name, mode)

    def _base_query(self, descriptor: ModelDescriptor, fields: Sequence[str]) -> FeedQuery:
        query = FeedQuery.for_model(descriptor)
        if fields:
            query.select(*fields)
        elif descriptor.fields:
            query.select(*descriptor.fields)
        return query

    def _paginate(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        query: FeedQuery,
        controller: TargetController,
        fields: Sequence[str],
        counters: RunCounters,
        progress: ProgressCallback | None,
    ) -> None:
        deduplicator = self._deduplicator_for(descriptor, mode)
        counters.state = RunState.PAGINATING
        continuation_token: str | None = None

        while True:
            # Fetch the next page
            page = self._call("fetch", descriptor, self._feed.fetch, query, continuation_token)
            continuation_token = page.continuation_token
            records = page.records

            counters.add_page(len(records))
            self._report(progress, counters)

            # Keep the newest version of each record
            if deduplicator is not None:
                records = deduplicator.deduplicate(records)

            if records:
                upserted = self._call("upsert", descriptor, controller.upsert, records, fields)
                counters.add_upserted(upserted)

            self._report(progress, counters)
            self._log_page(descriptor, len(page.records), len(records), counters, continuation_token)

            if not continuation_token:
                break

    async def _paginate_async(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        query: FeedQuery,
        controller: TargetController,
        fields: Sequence[str],
        counters: RunCounters,
        progress: ProgressCallback | None,
        cancel_token: CancellationToken,
    ) -> bool:
        deduplicator = self._deduplicator_for(descriptor, mode)
        counters.state = RunState.PAGINATING
        continuation_token: str | None = None

        while True:
            if cancel_token.cancelled:
                return False

            page = await self._call_async(
                "fetch",
                descriptor,
                self._feed.fetch_async(query, continuation_token, cancel_token),
            )
            continuation_token = page.continuation_token
            records = page.records

            counters.add_page(len(records))
            self._report(progress, counters)

            if deduplicator is not None:
                records = deduplicator.deduplicate(records)

            if records:
                if cancel_token.cancelled:
                    return False
                upserted = await self._call_async(
                    "upsert", descriptor, controller.upsert_async(records, fields, cancel_token)
                )
                counters.add_upserted(upserted)

            self._report(progress, counters)
            self._log_page(descriptor, len(page.records), len(records), counters, continuation_token)

            if not continuation_token:
                return True

    def _reconcile_deletions(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        watermark: Watermark,
        controller: TargetController,
        counters: RunCounters,
    ) -> None:
        if not self._deletions_apply(descriptor, mode, watermark):
            return

        query = deletion_query(descriptor.deletion_entity_type, watermark)
        keys: list[UUID] = []
        continuation_token: str | None = None

        # Collect every deleted key before touching the store
        while True:
            page = self._call("fetch_deletions", descriptor, self._feed.fetch, query, continuation_token)
            keys.extend(self._entity_keys(descriptor, page.records))
            continuation_token = page.continuation_token
            if not continuation_token:
                break

        applied = self._call("delete", descriptor, controller.delete, keys) if keys else 0
        counters.set_deletions(len(keys), applied)
        counters.state = RunState.DELETIONS_RECONCILED

        log.info(
            "deletions_applied",
            model=descriptor.name,
            deletions_read=counters.deletions_read,
            deletions_applied=counters.deletions_applied,
        )

    async def _reconcile_deletions_async(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        watermark: Watermark,
        controller: TargetController,
        counters: RunCounters,
        cancel_token: CancellationToken,
    ) -> bool:
        if not self._deletions_apply(descriptor, mode, watermark):
            return True

        query = deletion_query(descriptor.deletion_entity_type, watermark)
        keys: list[UUID] = []
        continuation_token: str | None = None

        while True:
            if cancel_token.cancelled:
                return False
            page = await self._call_async(
                "fetch_deletions",
                descriptor,
                self._feed.fetch_async(query, continuation_token, cancel_token),
            )
            keys.extend(self._entity_keys(descriptor, page.records))
            continuation_token = page.continuation_token
            if not continuation_token:
                break

        applied = 0
        if keys:
            if cancel_token.cancelled:
                counters.set_deletions(len(keys), 0)
                return False
            applied = await self._call_async(
                "delete", descriptor, controller.delete_async(keys, cancel_token)
            )
        counters.set_deletions(len(keys), applied)
        counters.state = RunState.DELETIONS_RECONCILED

        log.info(
            "deletions_applied",
            model=descriptor.name,
            deletions_read=counters.deletions_read,
            deletions_applied=counters.deletions_applied,
        )
        return True

    @staticmethod
    def _deletions_apply(
        descriptor: ModelDescriptor, mode: EndpointMode, watermark: Watermark
    ) -> bool:
        return (
            mode is EndpointMode.SYNC
            and descriptor.has_deletion_log
            and isinstance(watermark, TimestampWatermark)
        )

    @staticmethod
    def _deduplicator_for(descriptor: ModelDescriptor, mode: EndpointMode) -> Deduplicator | None:
        if mode is not EndpointMode.SYNC:
            return None
        return Deduplicator(descriptor.identifier_fields)

    @staticmethod
    def _entity_keys(descriptor: ModelDescriptor, records: Sequence[dict[str, Any]]) -> list[UUID]:
        keys: list[UUID] = []
        for record in records:
            raw = record.get(DELETED_KEY_FIELD)
            try:
                keys.append(raw if isinstance(raw, UUID) else UUID(str(raw)))
            except ValueError as e:
                raise TransportError(
                    "fetch_deletions", descriptor.name, f"malformed entity key {raw!r}"
                ) from e
        return keys

    @staticmethod
    def _report(progress: ProgressCallback | None, counters: RunCounters) -> None:
        if progress is not None:
            progress(counters.records_read, counters.records_upserted)

    @staticmethod
    def _log_page(
        descriptor: ModelDescriptor,
        fetched: int,
        applied: int,
        counters: RunCounters,
        continuation_token: str | None,
    ) -> None:
        log.debug(
            "page_processed",
            model=descriptor.name,
            fetched=fetched,
            applied=applied,
            records_read=counters.records_read,
            records_upserted=counters.records_upserted,
            has_more=bool(continuation_token),
        )

    @staticmethod
    def _call(
        operation: str,
        descriptor: ModelDescriptor,
        func: Callable[..., T],
        *args: Any,
    ) -> T:
        try:
            return func(*args)
        except FeedSyncError:
            raise
        except Exception as e:
            log.error(
                "collaborator_call_failed",
                operation=operation,
                model=descriptor.name,
                error=str(e),
            )
            raise TransportError(operation, descriptor.name, str(e)) from e

    @staticmethod
    async def _call_async(operation: str, descriptor: ModelDescriptor, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except FeedSyncError:
            raise
        except Exception as e:
            log.error(
                "collaborator_call_failed",
                operation=operation,
                model=descriptor.name,
                error=str(e),
            )
            raise TransportError(operation, descriptor.name, str(e)) from e

    @staticmethod
    def _finish(counters: RunCounters) -> SyncResult:
        counters.state = RunState.DONE
        result = counters.to_result()
        log.info(
            "sync_completed", total_changes=result.total_changes, **result.model_dump(mode="json")
        )
        return result

    @staticmethod
    def _cancelled(counters: RunCounters) -> SyncResult:
        log.warning("sync_cancelled", model=counters.model_type, state=counters.state.value)
        counters.state = RunState.CANCELLED
        return counters.to_result()
