"""Background workers supporting async processing."""

from .quota_refresh import QuotaRefreshWorker

__all__ = ["QuotaRefreshWorker"]
