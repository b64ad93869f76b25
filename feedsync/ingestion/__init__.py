"""Remote feed clients"""

from feedsync.ingestion.feed_client import FeedClient

__all__ = ["FeedClient"]
