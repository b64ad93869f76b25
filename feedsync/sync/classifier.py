"""Endpoint selection for a model."""

from feedsync.models.descriptor import EndpointMode, ModelDescriptor


def classify_endpoint(descriptor: ModelDescriptor) -> EndpointMode:
    """Pick the endpoint used to synchronize a model: sync, then bulk, then single."""
    if descriptor.supports_sync_feed:
        return EndpointMode.SYNC
    if descriptor.supports_bulk_feed:
        return EndpointMode.BULK
    return EndpointMode.SINGLE
