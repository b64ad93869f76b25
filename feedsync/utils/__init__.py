"""Shared utilities for configuration, logging, and transport retries"""

from feedsync.utils.retry import exponential_backoff_retry, is_transient

__all__ = ["exponential_backoff_retry", "is_transient"]
