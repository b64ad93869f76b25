"""Property-based tests for retry logic with exponential backoff."""

from unittest.mock import Mock, patch

import pytest
import requests
import structlog
from hypothesis import given, settings, strategies as st
from requests.exceptions import ConnectionError, HTTPError

from feedsync.utils.retry import TRANSIENT_STATUS_CODES, exponential_backoff_retry, is_transient

log = structlog.stdlib.get_logger()


def http_error(status_code: int) -> HTTPError:
    response = requests.Response()
    response.status_code = status_code
    return HTTPError(f"HTTP {status_code}", response=response)


@given(
    st.integers(min_value=1, max_value=5),
    st.floats(min_value=0.01, max_value=2.0),
)
@settings(max_examples=50, deadline=None)
def test_backoff_delays_double_up_to_the_cap(num_failures: int, base_delay: float):
    """Delays between attempts double each time and never exceed max_delay."""
    log.info("test_backoff_delays_double_up_to_the_cap", num_failures=num_failures)
    max_delay = 5.0
    call_count = 0

    @exponential_backoff_retry(
        max_retries=num_failures,
        base_delay=base_delay,
        max_delay=max_delay,
        exceptions=(ValueError,),
    )
    def flaky_function():
        nonlocal call_count
        call_count += 1
        if call_count <= num_failures:
            raise ValueError(f"Simulated failure {call_count}")
        return "success"

    with patch("feedsync.utils.retry.time.sleep") as sleep:
        result = flaky_function()

    assert result == "success"
    assert call_count == num_failures + 1

    delays = [c.args[0] for c in sleep.call_args_list]
    assert delays == [min(base_delay * (2**i), max_delay) for i in range(num_failures)]
    assert all(delay <= max_delay for delay in delays)


@given(st.integers(min_value=0, max_value=10))
@settings(max_examples=30, deadline=None)
def test_exponential_backoff_max_retries(max_retries: int):
    """The wrapped call runs max_retries + 1 times before the error propagates."""
    call_count = 0

    @exponential_backoff_retry(max_retries=max_retries, base_delay=0.01, exceptions=(ValueError,))
    def always_failing_function():
        nonlocal call_count
        call_count += 1
        raise ValueError("Always fails")

    with patch("feedsync.utils.retry.time.sleep"):
        with pytest.raises(ValueError):
            always_failing_function()

    assert call_count == max_retries + 1


def test_unlisted_exceptions_are_not_retried():
    failing = Mock(side_effect=KeyError("missing"))

    @exponential_backoff_retry(max_retries=3, exceptions=(ValueError,))
    def wrapped():
        return failing()

    with patch("feedsync.utils.retry.time.sleep") as sleep:
        with pytest.raises(KeyError):
            wrapped()

    assert failing.call_count == 1
    sleep.assert_not_called()


def test_retry_predicate_stops_permanent_errors():
    failing = Mock(side_effect=http_error(404))

    @exponential_backoff_retry(max_retries=3, exceptions=(HTTPError,), retry_if=is_transient)
    def wrapped():
        return failing()

    with patch("feedsync.utils.retry.time.sleep") as sleep:
        with pytest.raises(HTTPError):
            wrapped()

    assert failing.call_count == 1
    sleep.assert_not_called()


class TestTransientClassification:
    """Only throttling, timeouts and server errors are worth retrying."""

    @given(st.sampled_from(sorted(TRANSIENT_STATUS_CODES)))
    def test_transient_statuses(self, status_code: int):
        assert is_transient(http_error(status_code))

    @given(st.integers(min_value=400, max_value=499).filter(lambda c: c not in TRANSIENT_STATUS_CODES))
    def test_client_errors_are_permanent(self, status_code: int):
        assert not is_transient(http_error(status_code))

    def test_connection_errors_are_transient(self):
        assert is_transient(ConnectionError("reset"))

    def test_http_error_without_response_is_transient(self):
        assert is_transient(HTTPError("no response"))
