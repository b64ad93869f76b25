"""Incremental synchronization of paginated entity feeds into local target stores."""

__version__ = "0.1.0"
