"""
Resumable (chunked) blob transfer with progress reporting and cancellation.

The blob backends supply two coroutines: one that stages a single chunk
under a block id and one that commits the ordered block ids as the final
object. A transfer is cancelled in place; already staged blocks are left
uncommitted and never become visible.
"""

from typing import Awaitable, Callable, List, Optional
import asyncio
import base64
import logging

from attachments.core.exceptions import TransferCancelled

logger = logging.getLogger(__name__)

StageBlock = Callable[[str, str, bytes], Awaitable[None]]
CommitBlocks = Callable[[str, List[str], Optional[str]], Awaitable[None]]
ProgressCallback = Callable[["ResumableTransfer"], None]


def make_block_id(index: int) -> str:
    """Block ids must be base64 and of equal length within one blob."""
    return base64.b64encode(f"block-{index:08d}".encode("utf-8")).decode("utf-8")


class ResumableTransfer:
    def __init__(
        self,
        path: str,
        data: bytes,
        stage_block: StageBlock,
        commit_blocks: CommitBlocks,
        chunk_size: int,
        content_type: Optional[str] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.path = path
        self.total_bytes = len(data)
        self.bytes_transferred = 0
        self.content_type = content_type
        self._data = data
        self._stage_block = stage_block
        self._commit_blocks = commit_blocks
        self._chunk_size = chunk_size
        self._listeners: List[ProgressCallback] = []
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None
        self.committed = False

    @property
    def percent(self) -> int:
        if self.committed:
            return 100
        if self.total_bytes == 0:
            return 0
        return round(self.bytes_transferred / self.total_bytes * 100)

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def on_progress(self, callback: ProgressCallback) -> None:
        self._listeners.append(callback)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        """Abort this transfer only. Safe to call before start or after completion."""
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """
        Run the transfer to completion.

        Raises:
            TransferCancelled: cancel() was called before the commit finished
            Exception: whatever the backend raised while staging or committing
        """
        if self._cancel_requested:
            raise TransferCancelled(self.path)
        self.start()
        try:
            await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise TransferCancelled(self.path) from None
            raise

    async def _run(self) -> None:
        block_ids = []
        for index, offset in enumerate(range(0, self.total_bytes, self._chunk_size)):
            if self._cancel_requested:
                raise TransferCancelled(self.path)
            chunk = self._data[offset:offset + self._chunk_size]
            block_id = make_block_id(index)
            await self._stage_block(self.path, block_id, chunk)
            block_ids.append(block_id)
            self.bytes_transferred += len(chunk)
            self._notify()

        if self._cancel_requested:
            raise TransferCancelled(self.path)
        await self._commit_blocks(self.path, block_ids, self.content_type)
        self.committed = True
        logger.debug(f"Committed {len(block_ids)} blocks for {self.path}")
        self._notify()

    def _notify(self) -> None:
        for callback in self._listeners:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Progress listener failed for {self.path}: {e}")
