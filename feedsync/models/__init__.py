"""Data models for feedsync."""

from feedsync.models.config import (
    AppConfig,
    FeedConfig,
    LoggingConfig,
    SyncConfig,
    TargetConfig,
)
from feedsync.models.descriptor import (
    DeletionRecord,
    EndpointMode,
    FeedPage,
    ModelDescriptor,
    ModifiedWatermark,
    NoWatermark,
    TimestampWatermark,
    Watermark,
)

__all__ = [
    "AppConfig",
    "DeletionRecord",
    "EndpointMode",
    "FeedConfig",
    "FeedPage",
    "LoggingConfig",
    "ModelDescriptor",
    "ModifiedWatermark",
    "NoWatermark",
    "SyncConfig",
    "TargetConfig",
    "TimestampWatermark",
    "Watermark",
]
