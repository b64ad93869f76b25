"""Typed feed queries and their preparation for synchronization."""

from collections.abc import Iterable
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from feedsync.models.descriptor import (
    DELETED_ENTITY_SET,
    DELETED_KEY_FIELD,
    DELETED_TYPE_FIELD,
    MODIFIED_FIELD,
    TIMESTAMP_FIELD,
    EndpointMode,
    EntityType,
    ModelDescriptor,
    ModifiedWatermark,
    TimestampWatermark,
    Watermark,
)
from feedsync.sync.errors import ConfigurationError

log = structlog.stdlib.get_logger()


class Operator(str, Enum):
    """Comparison operators supported by feed filters."""

    GT = "gt"
    EQ = "eq"

    def matches(self, actual: Any, expected: Any) -> bool:
        """Evaluate the comparison locally; None never matches."""
        if actual is None:
            return False
        if self is Operator.GT:
            return actual > expected
        return actual == expected


class Predicate(BaseModel):
    """A single-field comparison against a literal."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator
    value: Any

    def matches(self, record: dict[str, Any]) -> bool:
        return self.operator.matches(record.get(self.field), self.value)


class FeedQuery:
    """Outbound request for one entity set: projection, filters and endpoint.

    Fields and filters are only ever added. When the query knows the valid
    field names, unknown names are rejected as they are added.
    """

    def __init__(
        self,
        entity_set: str,
        known_fields: Iterable[str] | None = None,
        endpoint_mode: EndpointMode = EndpointMode.SINGLE,
    ):
        self.entity_set = entity_set
        self.endpoint_mode = endpoint_mode
        self._known_fields = frozenset(known_fields) if known_fields else None
        self._fields: list[str] = []
        self._predicates: list[Predicate] = []

    @classmethod
    def for_model(cls, descriptor: ModelDescriptor) -> "FeedQuery":
        """Create an empty query for a model, validating against its fields when declared."""
        known = descriptor.known_fields if descriptor.fields else None
        return cls(descriptor.entity_set, known_fields=known)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self._fields)

    @property
    def predicates(self) -> tuple[Predicate, ...]:
        return tuple(self._predicates)

    def select(self, *fields: str) -> "FeedQuery":
        """Add fields to the projection, keeping first-added order."""
        for field in fields:
            self._check_field(field)
            if field not in self._fields:
                self._fields.append(field)
        return self

    def where(self, field: str, operator: Operator, value: Any) -> "FeedQuery":
        """Add a filter; all filters must hold."""
        self._check_field(field)
        self._predicates.append(Predicate(field=field, operator=operator, value=value))
        return self

    def matches(self, record: dict[str, Any]) -> bool:
        return all(predicate.matches(record) for predicate in self._predicates)

    def project(self, record: dict[str, Any]) -> dict[str, Any]:
        """Restrict a record to the projection; an empty projection keeps every field."""
        if not self._fields:
            return dict(record)
        return {field: record[field] for field in self._fields if field in record}

    def _check_field(self, field: str) -> None:
        if not field or not field.strip():
            raise ConfigurationError(f"Blank field name in query for {self.entity_set}")
        if self._known_fields is not None and field not in self._known_fields:
            raise ConfigurationError(f"Unknown field '{field}' for {self.entity_set}")

    def __repr__(self) -> str:
        return (
            f"FeedQuery(entity_set={self.entity_set!r}, mode={self.endpoint_mode.value}, "
            f"fields={self._fields!r}, predicates={self._predicates!r})"
        )


def prepare_for_sync(
    query: FeedQuery,
    descriptor: ModelDescriptor,
    mode: EndpointMode,
    watermark: Watermark,
) -> FeedQuery:
    """
    Extend a query with the fields and filters a synchronization run needs.

    The identifier fields are always read: they are added to a non-empty
    projection, and an empty projection already reads every field. Sync
    mode projects the feed timestamp and filters on
    ``Timestamp > watermark``. Bulk mode with a modified field projects it
    and filters on ``Modified > watermark`` only when a previous watermark
    exists. Single mode adds no filter. A query
    with an empty projection stays unprojected.

    Args:
        query: Query to extend in place
        descriptor: Model being synchronized
        mode: Endpoint mode chosen for the run
        watermark: Watermark resolved for the run

    Returns:
        The same query, extended

    Raises:
        ConfigurationError: If the model has no identifier field or the
            watermark does not fit the mode
    """
    if not descriptor.identifier_fields:
        raise ConfigurationError(f"Model {descriptor.name} declares no identifier field")

    query.endpoint_mode = mode
    projected = bool(query.fields)
    if projected:
        query.select(*descriptor.identifier_fields)

    if mode is EndpointMode.SYNC:
        if not isinstance(watermark, TimestampWatermark):
            raise ConfigurationError(f"Sync mode needs a timestamp watermark, got {watermark!r}")
        if projected:
            query.select(TIMESTAMP_FIELD)
        query.where(TIMESTAMP_FIELD, Operator.GT, watermark.value)
    elif mode is EndpointMode.BULK and descriptor.has_modified_field:
        if projected:
            query.select(MODIFIED_FIELD)
        if isinstance(watermark, ModifiedWatermark) and watermark.value is not None:
            query.where(MODIFIED_FIELD, Operator.GT, watermark.value)

    log.debug("query_prepared", model=descriptor.name, query=repr(query))
    return query


def deletion_query(entity_type: EntityType, watermark: TimestampWatermark) -> FeedQuery:
    """Query the deletion log for one entity type, after the run's watermark."""
    query = FeedQuery(
        DELETED_ENTITY_SET,
        known_fields=(DELETED_KEY_FIELD, DELETED_TYPE_FIELD, TIMESTAMP_FIELD),
        endpoint_mode=EndpointMode.SYNC,
    )
    return (
        query.where(TIMESTAMP_FIELD, Operator.GT, watermark.value)
        .where(DELETED_TYPE_FIELD, Operator.EQ, entity_type)
        .select(DELETED_KEY_FIELD)
    )
