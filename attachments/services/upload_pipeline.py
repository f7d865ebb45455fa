"""
Upload pipeline: persists a batch of local files into one folder.

Files are transferred strictly one after another. Each file goes through a
resumable block upload (with progress and a cancel handle); a transport
failure falls back once to a single-shot upload. The blob is written before
its metadata record, so a crash in between leaves at most an orphaned blob.
A file that cannot be stored aborts the rest of the batch; files committed
before it stay committed.
"""

from datetime import datetime, timezone
from pydantic import BaseModel, Field, model_validator
from typing import Dict, Iterable, List, Optional, Set
import enum
import logging
import mimetypes
import uuid

from attachments.core.exceptions import (
    TransferCancelled,
    UploadFailed,
    UploadTransferFailed,
)
from attachments.core.security import Identity
from attachments.models.entity import EntityRef, build_storage_path
from attachments.models.records import FILES, FileRecord, Location, file_type_of
from attachments.services.transfer import ResumableTransfer

logger = logging.getLogger(__name__)


class UploadStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PendingUpload(BaseModel):
    """A local file selected for upload."""

    name: str = Field(..., min_length=1)
    data: bytes = b""
    size: Optional[int] = None
    content_type: Optional[str] = None

    @model_validator(mode="after")
    def default_size(self):
        if self.size is None:
            self.size = len(self.data)
        return self


class UploadProgress(BaseModel):
    name: str
    percent: int = 0
    status: UploadStatus = UploadStatus.PENDING


class UploadTarget(BaseModel):
    entity: EntityRef
    location: Location

    @property
    def folder_id(self) -> str:
        return self.location.id

    @property
    def depth(self) -> int:
        return self.location.depth


class UploadResult(BaseModel):
    committed: List[FileRecord] = []
    cancelled: List[str] = []


class UploadBatch:
    """Pending selection, per-file progress and cancel handles for one upload action."""

    def __init__(self, target: UploadTarget, files: Iterable[PendingUpload]):
        self.id = uuid.uuid4().hex
        self.target = target
        self.pending: List[PendingUpload] = list(files)
        self.progress: List[UploadProgress] = [UploadProgress(name=file.name) for file in self.pending]
        self.running = False
        self._transfers: Dict[int, ResumableTransfer] = {}
        self._cancel_requested: Set[int] = set()

    def cancel(self, index: int) -> None:
        """Cancel one file. Siblings and already committed files are unaffected."""
        if not 0 <= index < len(self.progress):
            raise IndexError(f"No file at position {index} in this batch")
        self._cancel_requested.add(index)
        transfer = self._transfers.get(index)
        if transfer is not None:
            transfer.cancel()
        elif self.progress[index].status == UploadStatus.PENDING:
            self.progress[index].status = UploadStatus.CANCELLED

    def is_cancelled(self, index: int) -> bool:
        return index in self._cancel_requested

    def clear(self) -> None:
        self.pending = []
        self.progress = []
        self._transfers.clear()
        self.running = False


class UploadPipeline:
    def __init__(self, metadata_store, blob_store, outbox, max_file_size: int):
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.outbox = outbox
        self.max_file_size = max_file_size

    def select_files(self, files: Iterable[PendingUpload]) -> List[PendingUpload]:
        """Drop files over the size cap. Not an error: they are just left out."""
        selected = []
        for file in files:
            if file.size > self.max_file_size:
                logger.info(f"Skipping {file.name}: {file.size} bytes exceeds {self.max_file_size}")
                continue
            selected.append(file)
        return selected

    def start_batch(self, target: UploadTarget, files: Iterable[PendingUpload]) -> UploadBatch:
        return UploadBatch(target, self.select_files(files))

    async def run(self, batch: UploadBatch, identity_provider) -> UploadResult:
        """
        Upload every pending file of the batch in order.

        Raises:
            AuthenticationRequired: no identity could be established; nothing was transferred
            UploadFailed: a file could not be stored; later files were not attempted
        """
        committed: List[FileRecord] = []
        cancelled: List[str] = []
        batch.running = True
        try:
            # Blob writes require an identity
            identity = await identity_provider.ensure_signed_in()
            for index, pending in enumerate(batch.pending):
                record = await self._upload_one(batch, index, pending, identity)
                if record is None:
                    cancelled.append(pending.name)
                else:
                    committed.append(record)
        except UploadFailed as e:
            e.committed = list(committed)
            logger.error(f"Upload batch {batch.id} aborted after {len(committed)} files: {e}")
            raise
        finally:
            batch.clear()

        logger.info(
            f"Upload batch {batch.id} finished: {len(committed)} committed, {len(cancelled)} cancelled"
        )
        return UploadResult(committed=committed, cancelled=cancelled)

    async def _upload_one(
        self,
        batch: UploadBatch,
        index: int,
        pending: PendingUpload,
        identity: Identity
    ) -> Optional[FileRecord]:
        entity = batch.target.entity
        folder_id = batch.target.folder_id
        progress = batch.progress[index]

        if batch.is_cancelled(index):
            progress.status = UploadStatus.CANCELLED
            return None

        path = build_storage_path(entity, folder_id, pending.name)
        content_type = pending.content_type or mimetypes.guess_type(pending.name)[0]
        progress.status = UploadStatus.UPLOADING

        transfer = self.blob_store.put_resumable(path, pending.data, content_type)
        transfer.on_progress(lambda t: setattr(progress, "percent", t.percent))
        batch._transfers[index] = transfer
        try:
            await transfer.wait()
        except TransferCancelled:
            progress.status = UploadStatus.CANCELLED
            logger.info(f"Upload of {pending.name} cancelled")
            return None
        except Exception as e:
            if batch.is_cancelled(index):
                progress.status = UploadStatus.CANCELLED
                logger.info(f"Upload of {pending.name} cancelled after a transport failure")
                return None
            failure = UploadTransferFailed(path, e)
            logger.warning(f"{failure}; retrying with a single-shot upload")
            try:
                await self.blob_store.put(path, pending.data, content_type)
            except Exception as fallback_error:
                progress.status = UploadStatus.FAILED
                logger.error(f"Fallback upload failed for {path}: {fallback_error}")
                raise UploadFailed(pending.name) from fallback_error
        finally:
            batch._transfers.pop(index, None)

        try:
            download_url = await self.blob_store.url_for(path)
            if batch.is_cancelled(index):
                await self._discard(path, pending, progress)
                return None
            now = datetime.now(timezone.utc)
            document = {
                "name": pending.name,
                "size": pending.size,
                "type": file_type_of(pending.name),
                "parentId": folder_id,
                "storagePath": path,
                "downloadURL": download_url,
                "entityType": entity.entity_type.value,
                "entityId": entity.entity_id,
                "depth": batch.target.depth,
                "createdAt": now,
                "updatedAt": now,
            }
            record_id = await self.metadata_store.create(entity, FILES, document)
        except Exception as e:
            progress.status = UploadStatus.FAILED
            logger.error(f"Error recording uploaded file {path}: {str(e)}")
            raise UploadFailed(pending.name) from e

        progress.percent = 100
        progress.status = UploadStatus.COMMITTED
        logger.info(f"Uploaded {pending.name} to {path}")

        await self.outbox.attachment_added(
            entity,
            pending.name,
            actor=identity.actor,
            metadata={"fileId": record_id, "folderId": folder_id},
        )
        return FileRecord.from_document({"id": record_id, **document})

    async def _discard(self, path: str, pending: PendingUpload, progress: UploadProgress) -> None:
        """Cancelled after its blob was written: remove the blob, write no record."""
        progress.status = UploadStatus.CANCELLED
        logger.info(f"Upload of {pending.name} cancelled before its record was written")
        try:
            await self.blob_store.delete(path)
        except Exception as e:
            logger.warning(f"Could not remove cancelled upload {path}: {str(e)}")
