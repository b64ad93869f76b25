"""Data models for synchronization runs."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from feedsync.models.descriptor import EndpointMode


class RunState(str, Enum):
    """Lifecycle of a single synchronization run."""

    IDLE = "idle"
    WATERMARK_RESOLVED = "watermark_resolved"
    PAGINATING = "paginating"
    DELETIONS_RECONCILED = "deletions_reconciled"
    DONE = "done"
    CANCELLED = "cancelled"


class SyncResult(BaseModel):
    """Report of a synchronization run. Read-only once returned."""

    model_config = ConfigDict(frozen=True)

    model_type: str = Field(default=..., description="Name of the synchronized model")
    endpoint_mode: EndpointMode = Field(default=..., description="Endpoint used for the run")
    records_read: int = Field(default=0, ge=0, description="Records fetched from the feed")
    records_upserted: int = Field(
        default=0, ge=0, description="Records the target reported as inserted or updated"
    )
    deletions_read: int = Field(default=0, ge=0, description="Deletion-log entries fetched")
    deletions_applied: int = Field(
        default=0, ge=0, description="Records the target reported as deleted"
    )
    cancelled: bool = Field(default=False, description="Run stopped at a cancellation checkpoint")

    @model_validator(mode="after")
    def check_counters(self) -> "SyncResult":
        if self.records_upserted > self.records_read:
            raise ValueError("records_upserted cannot exceed records_read")
        if self.deletions_applied > self.deletions_read:
            raise ValueError("deletions_applied cannot exceed deletions_read")
        return self

    @property
    def total_changes(self) -> int:
        """Records written plus records deleted."""
        return self.records_upserted + self.deletions_applied


class RunCounters:
    """Mutable counters accumulated while a run is in progress."""

    def __init__(self, model_type: str, endpoint_mode: EndpointMode):
        self.model_type = model_type
        self.endpoint_mode = endpoint_mode
        self.state = RunState.IDLE
        self.records_read = 0
        self.records_upserted = 0
        self.deletions_read = 0
        self.deletions_applied = 0

    def add_page(self, read: int) -> None:
        self.records_read += read

    def add_upserted(self, upserted: int) -> None:
        # A store can report more writes than it was given; the run never claims more than it read
        self.records_upserted = min(self.records_upserted + upserted, self.records_read)

    def set_deletions(self, read: int, applied: int) -> None:
        self.deletions_read = read
        self.deletions_applied = min(applied, read)

    def to_result(self) -> SyncResult:
        return SyncResult(
            model_type=self.model_type,
            endpoint_mode=self.endpoint_mode,
            records_read=self.records_read,
            records_upserted=self.records_upserted,
            deletions_read=self.deletions_read,
            deletions_applied=self.deletions_applied,
            cancelled=self.state is RunState.CANCELLED,
        )
