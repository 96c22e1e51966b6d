"""Background workers."""

from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .no_show_worker import NoShowWorker

__all__ = ["IdempotencyCleanupWorker", "NoShowWorker"]
