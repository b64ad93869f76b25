"""Synchronization components for incremental feed-to-store runs."""

from feedsync.sync.cancellation import CancellationToken, SyncCancelled
from feedsync.sync.classifier import classify_endpoint
from feedsync.sync.deduplicator import Deduplicator
from feedsync.sync.errors import ConfigurationError, FeedSyncError, TransportError
from feedsync.sync.models import RunState, SyncResult
from feedsync.sync.query import FeedQuery, Operator, Predicate, deletion_query, prepare_for_sync
from feedsync.sync.registry import ModelRegistry
from feedsync.sync.sync_coordinator import SyncCoordinator
from feedsync.sync.watermark import WatermarkResolver

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "Deduplicator",
    "FeedQuery",
    "FeedSyncError",
    "ModelRegistry",
    "Operator",
    "Predicate",
    "RunState",
    "SyncCancelled",
    "SyncCoordinator",
    "SyncResult",
    "TransportError",
    "WatermarkResolver",
    "classify_endpoint",
    "deletion_query",
    "prepare_for_sync",
]
