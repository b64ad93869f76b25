"""Collapsing repeated change records within a sync-feed page."""

from collections.abc import Sequence
from typing import Any

import structlog

from feedsync.models.descriptor import TIMESTAMP_FIELD
from feedsync.sync.errors import ConfigurationError

log = structlog.stdlib.get_logger()


class Deduplicator:
    """Keeps only the latest change per identifier in a sync-feed page.

    A sync feed may report the same entity several times in one page (for
    example created, then updated). Only the record with the highest feed
    timestamp survives. Among records sharing the highest timestamp, the
    first one in page order wins. Survivors keep the order in which their
    identifier first appeared.
    """

    def __init__(
        self,
        identifier_fields: Sequence[str],
        timestamp_field: str = TIMESTAMP_FIELD,
    ):
        if not identifier_fields:
            raise ConfigurationError("Deduplication needs at least one identifier field")
        self._identifier_fields: tuple[str, ...] = tuple(identifier_fields)
        self._timestamp_field: str = timestamp_field

    def deduplicate(self, records: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Collapse records sharing an identifier into the most recent one.

        Args:
            records: Records of one page, in feed order

        Returns:
            One record per distinct identifier

        Raises:
            ConfigurationError: If a record lacks an identifier or timestamp field
        """
        latest: dict[tuple[Any, ...], tuple[Any, dict[str, Any]]] = {}

        for record in records:
            key = self._key(record)
            timestamp = self._timestamp(record)
            current = latest.get(key)
            # Strictly greater keeps the earliest record among equal timestamps
            if current is None or timestamp > current[0]:
                latest[key] = (timestamp, record)

        survivors = [record for _, record in latest.values()]

        if len(survivors) < len(records):
            log.debug(
                "duplicates_collapsed",
                records_in=len(records),
                records_out=len(survivors),
            )

        return survivors

    def _key(self, record: dict[str, Any]) -> tuple[Any, ...]:
        try:
            return tuple(record[field] for field in self._identifier_fields)
        except KeyError as e:
            raise ConfigurationError(f"Record is missing identifier field {e}") from e

    def _timestamp(self, record: dict[str, Any]) -> Any:
        try:
            return record[self._timestamp_field]
        except KeyError:
            raise ConfigurationError(
                f"Record is missing timestamp field '{self._timestamp_field}'"
            ) from None
