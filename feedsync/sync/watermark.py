"""Resolution of the per-model watermark from the target store."""

import structlog

from feedsync.models.descriptor import (
    EndpointMode,
    ModelDescriptor,
    ModifiedWatermark,
    NoWatermark,
    TimestampWatermark,
    Watermark,
)
from feedsync.sync.cancellation import CancellationToken
from feedsync.sync.protocols import TargetController

log = structlog.stdlib.get_logger()


class WatermarkResolver:
    """Reads the last-seen progress marker for a model from its target controller.

    Sync mode uses the highest stored feed timestamp (0 for an empty store).
    Bulk mode uses the latest stored modified instant when the model tracks
    one (None for an empty store). Single mode, and bulk mode without a
    modified field, never query the store.
    """

    def resolve(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        controller: TargetController,
    ) -> Watermark:
        """
        Resolve the watermark for a run.

        Args:
            descriptor: Model being synchronized
            mode: Endpoint mode chosen for the run
            controller: Target controller for the model

        Returns:
            Watermark to filter the feed with
        """
        if mode is EndpointMode.SYNC:
            watermark: Watermark = TimestampWatermark(value=controller.max_timestamp() or 0)
        elif mode is EndpointMode.BULK and descriptor.has_modified_field:
            watermark = ModifiedWatermark(value=controller.max_modified())
        else:
            watermark = NoWatermark()

        log.info("watermark_resolved", model=descriptor.name, mode=mode.value, watermark=watermark)
        return watermark

    async def resolve_async(
        self,
        descriptor: ModelDescriptor,
        mode: EndpointMode,
        controller: TargetController,
        cancel_token: CancellationToken | None = None,
    ) -> Watermark:
        """
        Asynchronous form of resolve.

        Raises:
            SyncCancelled: If the token is cancelled before the store is queried
        """
        if mode is EndpointMode.SYNC:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            value = await controller.max_timestamp_async(cancel_token)
            watermark: Watermark = TimestampWatermark(value=value or 0)
        elif mode is EndpointMode.BULK and descriptor.has_modified_field:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            watermark = ModifiedWatermark(value=await controller.max_modified_async(cancel_token))
        else:
            watermark = NoWatermark()

        log.info("watermark_resolved", model=descriptor.name, mode=mode.value, watermark=watermark)
        return watermark
