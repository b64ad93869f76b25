"""HTTP feed client for OData-style sync, bulk and entity endpoints."""

import asyncio
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qs, urlparse
from uuid import UUID

import requests
import structlog
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from feedsync.models.descriptor import EndpointMode, FeedPage
from feedsync.sync.cancellation import CancellationToken
from feedsync.sync.errors import TransportError
from feedsync.sync.query import FeedQuery, Predicate
from feedsync.utils.retry import exponential_backoff_retry, is_transient

log = structlog.stdlib.get_logger()

# Microsoft JSON date literal, e.g. /Date(1704067200000)/
_JSON_DATE = re.compile(r"^/Date\((-?\d+)\)/$")

_ENDPOINT_PREFIX = {
    EndpointMode.SYNC: "sync/",
    EndpointMode.BULK: "bulk/",
    EndpointMode.SINGLE: "",
}


def format_literal(value: Any) -> str:
    """Render a filter literal in OData syntax."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, UUID):
        return f"guid'{value}'"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return f"datetime'{value.isoformat(timespec='milliseconds')}'"
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def format_filter(predicates: tuple[Predicate, ...]) -> str | None:
    """Join predicates into an OData $filter expression."""
    if not predicates:
        return None
    return " and ".join(
        f"{p.field} {p.operator.value} {format_literal(p.value)}" for p in predicates
    )


def parse_value(value: Any) -> Any:
    """Convert JSON date literals to aware datetimes; leave everything else alone."""
    if isinstance(value, str):
        match = _JSON_DATE.match(value)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    return value


class FeedClient:
    """Reads pages from a remote feed over HTTP.

    Queries are translated to ``$select`` / ``$filter`` / ``$skiptoken``
    parameters; responses are expected as ``{"d": {"results": [...],
    "__next": "<url>"}}``. Transient failures are retried with exponential
    backoff; anything that still fails is raised as TransportError.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        session: requests.Session | None = None,
    ):
        """
        Initialize feed client.

        Args:
            base_url: API root the entity-set paths are appended to
            auth_token: Bearer token
            timeout_seconds: Per-request timeout
            max_retries: Retries for transient failures
            session: Optional pre-configured requests session
        """
        self._base_url: str = base_url.rstrip("/") + "/"
        self._timeout: float = timeout_seconds
        self._session: requests.Session = session if session is not None else requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {auth_token}", "Accept": "application/json"}
        )
        self._get_json = exponential_backoff_retry(
            max_retries=max_retries,
            base_delay=1.0,
            max_delay=60.0,
            exceptions=(RequestException, HTTPError, Timeout, ConnectionError),
            retry_if=is_transient,
        )(self._get_json_once)

        log.info("feed_client_initialized", base_url=self._base_url, max_retries=max_retries)

    def url_for(self, query: FeedQuery) -> str:
        return f"{self._base_url}{_ENDPOINT_PREFIX[query.endpoint_mode]}{query.entity_set}"

    def params_for(self, query: FeedQuery, continuation_token: str | None) -> dict[str, str]:
        params: dict[str, str] = {}
        if query.fields:
            params["$select"] = ",".join(query.fields)
        expression = format_filter(query.predicates)
        if expression:
            params["$filter"] = expression
        if continuation_token:
            params["$skiptoken"] = continuation_token
        return params

    def fetch(self, query: FeedQuery, continuation_token: str | None = None) -> FeedPage:
        """
        Fetch one page of results.

        Args:
            query: Query to run
            continuation_token: Skip token from the previous page, None for the first page

        Returns:
            FeedPage with converted records and the next skip token

        Raises:
            TransportError: If the request fails after retries or the response is malformed
        """
        url = self.url_for(query)
        params = self.params_for(query, continuation_token)

        log.debug("fetching_feed_page", url=url, params=params)

        try:
            body = self._get_json(url, params)
        except RequestException as e:
            log.error("feed_request_failed", url=url, error=str(e))
            raise TransportError("fetch", query.entity_set, str(e)) from e

        try:
            data = body["d"]
            results = data["results"] if isinstance(data, dict) else data
            next_link = data.get("__next") if isinstance(data, dict) else None
        except (KeyError, TypeError) as e:
            log.error("malformed_feed_response", url=url, error=str(e))
            raise TransportError("fetch", query.entity_set, f"malformed response: {e}") from e

        page = FeedPage(
            records=[self._convert_record(r) for r in results],
            continuation_token=self._skiptoken_from(next_link),
        )

        log.info(
            "feed_page_fetched",
            entity_set=query.entity_set,
            mode=query.endpoint_mode.value,
            records=len(page.records),
            has_more=not page.is_last,
        )
        return page

    async def fetch_async(
        self,
        query: FeedQuery,
        continuation_token: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> FeedPage:
        """Asynchronous form of fetch; the request itself runs in a worker thread."""
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return await asyncio.to_thread(self.fetch, query, continuation_token)

    def close(self) -> None:
        self._session.close()

    def _get_json_once(self, url: str, params: dict[str, str]) -> Any:
        response = self._session.get(url, params=params, timeout=self._timeout)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise TransportError("fetch", url, f"response is not JSON: {e}") from e

    @staticmethod
    def _convert_record(record: dict[str, Any]) -> dict[str, Any]:
        # __metadata carries OData bookkeeping, not entity data
        return {k: parse_value(v) for k, v in record.items() if k != "__metadata"}

    @staticmethod
    def _skiptoken_from(next_link: str | None) -> str | None:
        if not next_link:
            return None
        tokens = parse_qs(urlparse(next_link).query).get("$skiptoken")
        return tokens[0] if tokens else None
