"""Static capability metadata for synchronizable models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Feed-assigned change counter present on every sync-feed record
TIMESTAMP_FIELD: str = "Timestamp"
# Last-modified instant exposed by models that track one
MODIFIED_FIELD: str = "Modified"

# Deletion log entity set and its fields
DELETED_ENTITY_SET: str = "Deleted"
DELETED_KEY_FIELD: str = "EntityKey"
DELETED_TYPE_FIELD: str = "EntityType"

# Deletion-log entity types are plain integers assigned by the remote system
EntityType = int


class EndpointMode(str, Enum):
    """Feed endpoint used to synchronize a model, in priority order."""

    SYNC = "sync"
    BULK = "bulk"
    SINGLE = "single"


class ModelDescriptor(BaseModel):
    """Describes how a remote model can be synchronized."""

    name: str = Field(default=..., min_length=1, description="Model type name")
    entity_set: str = Field(
        default=..., min_length=1, description="Remote collection name, e.g. 'Financial/GLAccounts'"
    )
    identifier_fields: tuple[str, ...] = Field(
        default=("ID",), description="Ordered identifier field names (composite keys allowed)"
    )
    supports_sync_feed: bool = Field(default=False, description="Model exposes a sync feed")
    supports_bulk_feed: bool = Field(default=False, description="Model exposes a bulk feed")
    has_modified_field: bool = Field(
        default=False, description="Model exposes a last-modified field"
    )
    deletion_entity_type: EntityType | None = Field(
        default=None, description="Entity type recorded in the deletion log, if any"
    )
    fields: tuple[str, ...] = Field(
        default=(), description="Known data fields; empty means projections are not validated"
    )

    @field_validator("identifier_fields", "fields")
    @classmethod
    def validate_field_names(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject blank and duplicate field names without reordering."""
        if any(not name or not name.strip() for name in v):
            raise ValueError("field names must not be blank")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate field names: {list(v)}")
        return v

    @property
    def has_deletion_log(self) -> bool:
        return self.deletion_entity_type is not None

    @property
    def system_fields(self) -> tuple[str, ...]:
        """Identifier and watermark fields that are always projected and written."""
        extra: list[str] = []
        if self.supports_sync_feed:
            extra.append(TIMESTAMP_FIELD)
        if self.has_modified_field:
            extra.append(MODIFIED_FIELD)
        return self.identifier_fields + tuple(f for f in extra if f not in self.identifier_fields)

    @property
    def known_fields(self) -> frozenset[str]:
        """All field names that may appear in a projection or filter."""
        return frozenset(self.system_fields) | frozenset(self.fields)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "GLAccount",
                "entity_set": "Financial/GLAccounts",
                "identifier_fields": ["ID"],
                "supports_sync_feed": True,
                "supports_bulk_feed": True,
                "has_modified_field": True,
                "deletion_entity_type": 4,
                "fields": ["Code", "Description"],
            }
        },
    )


class DeletionRecord(BaseModel):
    """An entry of the remote deletion log."""

    model_config = ConfigDict(frozen=True)

    entity_key: UUID = Field(default=..., description="Identifier of the deleted entity")
    entity_type: EntityType = Field(default=..., description="Entity type of the deleted entity")
    timestamp: int = Field(default=..., ge=0, description="Feed timestamp of the deletion")

    def to_feed_record(self) -> dict[str, object]:
        """Render as a deletion-log feed record."""
        return {
            DELETED_KEY_FIELD: self.entity_key,
            DELETED_TYPE_FIELD: self.entity_type,
            TIMESTAMP_FIELD: self.timestamp,
        }


class FeedPage(BaseModel):
    """One page of feed results."""

    records: list[dict] = Field(default_factory=list, description="Entity records in feed order")
    continuation_token: str | None = Field(
        default=None, description="Cursor for the next page; empty or None ends pagination"
    )

    @property
    def is_last(self) -> bool:
        return not self.continuation_token


class TimestampWatermark(BaseModel):
    """Highest feed timestamp already stored (sync mode)."""

    model_config = ConfigDict(frozen=True)

    value: int = Field(default=0, ge=0)


class ModifiedWatermark(BaseModel):
    """Latest modified instant already stored (bulk mode); None means full fetch."""

    model_config = ConfigDict(frozen=True)

    value: datetime | None = None


class NoWatermark(BaseModel):
    """Run without incremental filtering."""

    model_config = ConfigDict(frozen=True)


Watermark = TimestampWatermark | ModifiedWatermark | NoWatermark
