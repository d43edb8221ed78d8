import logging

from core.errors import AlreadyProcessingError
from processing.summarizer import Summarizer

logger = logging.getLogger(__name__)


class ProcessingRunner:
    """
    Single-flight wrapper around the summarizer, shared by the timer and
    manual triggers. Only one batch runs per process.

    The guard is an in-memory flag: a multi-instance deployment would need a
    distributed lock instead.
    """

    def __init__(self, summarizer: Summarizer, batch_size: int = 20):
        self.summarizer = summarizer
        self.batch_size = batch_size
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_scheduled(self) -> int:
        if self._running:
            logger.info("Processing already in progress, skipping")
            return 0

        self._running = True
        logger.info("Starting processing cycle")
        try:
            processed = await self.summarizer.process_batch(self.batch_size)
            logger.info(f"Processing cycle complete: {processed} items processed")
            return processed
        except Exception as e:
            logger.exception(f"Processing cycle failed: {e}")
            return 0
        finally:
            self._running = False

    async def trigger(self, limit: int | None = None) -> int:
        if self._running:
            raise AlreadyProcessingError("Processing already in progress")

        self._running = True
        try:
            return await self.summarizer.process_batch(limit or self.batch_size)
        finally:
            self._running = False
