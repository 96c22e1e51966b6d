"""Worker manager for coordinating background tasks."""

import asyncio
from typing import Dict

from ..core.config import settings
from ..core.observability import get_logger
from .base import BaseWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .no_show_worker import NoShowWorker

logger = get_logger(__name__)


class WorkerManager:
    """Starts, stops and reports on the application's background workers."""

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {
            "no_show": NoShowWorker(interval_seconds=settings.no_show_sweep_interval_seconds),
            "idempotency_cleanup": IdempotencyCleanupWorker(interval_seconds=3600),
        }

    async def start_all(self) -> None:
        for worker in self.workers.values():
            await worker.start()
        logger.info("Background workers started", workers=list(self.workers))

    async def stop_all(self) -> None:
        """Stop all workers; errors from one worker do not prevent stopping the others."""
        names = list(self.workers)
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()), return_exceptions=True
        )
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", worker=name, error=str(result))

        logger.info("Background workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        return {name: worker.running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
