"""Recurring job entrypoints registered through the schedule config."""

__all__ = ["quota_refresh"]
