"""
Registry of upload batches running in the background.

Each HTTP upload request becomes one batch and one asyncio task. Batches
are independent of each other; the tracker only keeps their progress and
outcome so clients can poll and cancel.
"""

from pydantic import BaseModel
from collections import deque
from typing import Deque, Dict, List, Optional
import asyncio
import enum
import logging

from attachments.core.exceptions import UploadFailed
from attachments.models.records import FileRecord
from attachments.services.upload_pipeline import UploadBatch, UploadPipeline, UploadProgress

logger = logging.getLogger(__name__)


class BatchState(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchStatus(BaseModel):
    batch_id: str
    state: BatchState = BatchState.RUNNING
    progress: List[UploadProgress] = []
    committed: List[FileRecord] = []
    cancelled: List[str] = []
    error: Optional[str] = None


class UploadTracker:
    def __init__(self, pipeline: UploadPipeline, max_finished: int = 1000):
        self.pipeline = pipeline
        self.max_finished = max_finished
        self._batches: Dict[str, UploadBatch] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._statuses: Dict[str, BatchStatus] = {}
        self._finished: Deque[str] = deque()

    def submit(self, batch: UploadBatch, identity_provider) -> asyncio.Task:
        """Start running ``batch`` on the current event loop."""
        # Progress objects are updated in place; keep them past the batch's own clear()
        self._statuses[batch.id] = BatchStatus(batch_id=batch.id, progress=list(batch.progress))
        self._batches[batch.id] = batch
        task = asyncio.get_running_loop().create_task(self.pipeline.run(batch, identity_provider))
        task.add_done_callback(lambda finished: self._record_outcome(batch.id, finished))
        self._tasks[batch.id] = task
        logger.info(f"Submitted upload batch {batch.id} with {len(batch.pending)} files")
        return task

    def _record_outcome(self, batch_id: str, task: asyncio.Task) -> None:
        status = self._statuses[batch_id]
        self._tasks.pop(batch_id, None)
        self._batches.pop(batch_id, None)
        self._retire(batch_id)

        if task.cancelled():
            status.state = BatchState.CANCELLED
            return

        error = task.exception()
        if error is None:
            result = task.result()
            status.state = BatchState.COMPLETED
            status.committed = result.committed
            status.cancelled = result.cancelled
            return

        status.state = BatchState.FAILED
        status.error = str(error)
        if isinstance(error, UploadFailed):
            status.committed = list(error.committed)
        else:
            logger.error(f"Upload batch {batch_id} failed: {error}")

    def _retire(self, batch_id: str) -> None:
        """Keep only the newest max_finished outcomes; older ones can no longer be polled."""
        self._finished.append(batch_id)
        while len(self._finished) > self.max_finished:
            evicted = self._finished.popleft()
            self._statuses.pop(evicted, None)
            logger.debug(f"Evicted status of upload batch {evicted}")

    def status(self, batch_id: str) -> Optional[BatchStatus]:
        return self._statuses.get(batch_id)

    def cancel_file(self, batch_id: str, index: int) -> bool:
        """Cancel one file of a running batch. Returns False when the batch is no longer running."""
        batch = self._batches.get(batch_id)
        if batch is None:
            return False
        batch.cancel(index)
        return True

    async def shutdown(self) -> None:
        """Cancel every running batch and wait for the tasks to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running upload batches")
