"""
Attachment Service

Entry point used by the API layer. Wires the metadata store, blob store,
notifier and fetcher of the configured backend into the tree model, upload
pipeline, deletion engine and archive exporter, and implements the simple
folder/file mutations (create, rename) itself.
"""

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple
import asyncio
import logging

from attachments.core.config import Settings, settings as default_settings
from attachments.core.exceptions import InvalidName, RecordNotFound, RootFolderError
from attachments.models.entity import EntityRef
from attachments.models.records import (
    FILES,
    FOLDERS,
    ROOT,
    ROOT_ID,
    FileRecord,
    FolderRecord,
    Location,
)
from attachments.services.archive import ArchiveExporter, DownloadedFile, FolderArchive, HttpxFetcher
from attachments.services.deletion import DeletionEngine, DeletionReport
from attachments.services.outbox import FOLDER_CREATED, BestEffortOutbox
from attachments.services.subscription import watch_tree
from attachments.services.tree import Breadcrumb, NamespaceTree, ensure_can_create_folder
from attachments.services.upload_pipeline import (
    PendingUpload,
    UploadBatch,
    UploadPipeline,
    UploadResult,
    UploadTarget,
)
from attachments.services.upload_tracker import UploadTracker

logger = logging.getLogger(__name__)


def _clean_name(name: Optional[str], kind: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidName(kind)
    return name


class AttachmentService:
    def __init__(
        self,
        metadata_store,
        blob_store,
        notifier,
        fetcher,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or default_settings
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.notifier = notifier
        self.max_nodes = self.settings.MAX_TRAVERSAL_NODES

        self.outbox = BestEffortOutbox(metadata_store, notifier)
        self.uploads = UploadPipeline(
            metadata_store, blob_store, self.outbox, self.settings.max_upload_size_bytes
        )
        self.tracker = UploadTracker(self.uploads, self.settings.UPLOAD_STATUS_RETENTION)
        self.deletion = DeletionEngine(metadata_store, blob_store, self.outbox, self.max_nodes)
        self.archive = ArchiveExporter(metadata_store, blob_store, fetcher, self.max_nodes)

    async def ensure_storage_ready(self) -> None:
        """Create Azure tables/container when running against Azure (no-op in memory)."""
        ensure_tables = getattr(self.metadata_store, "ensure_tables_exist", None)
        ensure_container = getattr(self.blob_store, "ensure_container_exists", None)
        if ensure_tables is not None:
            await ensure_tables()
        if ensure_container is not None:
            await ensure_container()

    # Tree views

    async def load_tree(self, entity: EntityRef) -> NamespaceTree:
        folders = await self.metadata_store.query(entity, FOLDERS)
        files = await self.metadata_store.query(entity, FILES)
        return NamespaceTree.from_documents(folders, files, max_nodes=self.max_nodes)

    async def children(self, entity: EntityRef, folder_id: str) -> Tuple[List[FolderRecord], List[FileRecord]]:
        tree = await self.load_tree(entity)
        if folder_id != ROOT_ID and tree.folder(folder_id) is None:
            raise RecordNotFound(FOLDERS, folder_id)
        return tree.children_of(folder_id)

    async def path_to(self, entity: EntityRef, folder_id: str) -> Breadcrumb:
        tree = await self.load_tree(entity)
        return tree.path_to(folder_id)

    async def resolve_location(self, entity: EntityRef, folder_id: str) -> Location:
        if folder_id == ROOT_ID:
            return ROOT
        document = await self.metadata_store.get(entity, FOLDERS, folder_id)
        if document is None:
            raise RecordNotFound(FOLDERS, folder_id)
        return FolderRecord.from_document(document).location

    def watch(self, entity: EntityRef) -> AsyncIterator[NamespaceTree]:
        return watch_tree(self.metadata_store, entity, max_nodes=self.max_nodes)

    # Folder and file mutations

    async def create_folder(
        self,
        entity: EntityRef,
        parent: Location,
        name: str,
        actor: Optional[Dict[str, Any]] = None
    ) -> FolderRecord:
        """
        Create a folder under ``parent``.

        Raises:
            InvalidName: the trimmed name is empty
            DepthLimitExceeded: ``parent`` is already at the maximum depth; nothing is written
        """
        name = _clean_name(name, "Folder name")
        depth = ensure_can_create_folder(parent.depth)

        now = datetime.now(timezone.utc)
        document = {
            "name": name,
            "parentId": parent.id,
            "depth": depth,
            "size": 0,
            "entityType": entity.entity_type.value,
            "entityId": entity.entity_id,
            "createdAt": now,
            "updatedAt": now,
        }
        folder_id = await self.metadata_store.create(entity, FOLDERS, document)
        logger.info(f"Created folder {folder_id} ({name}) at depth {depth} for {entity.partition_key}")

        await self.outbox.log_activity(
            entity,
            FOLDER_CREATED,
            f'Created folder "{name}"',
            actor=actor,
            metadata={"folderId": folder_id, "parentId": parent.id},
        )
        return FolderRecord.from_document({"id": folder_id, **document})

    async def rename_folder(self, entity: EntityRef, folder_id: str, name: str) -> None:
        if folder_id == ROOT_ID:
            raise RootFolderError("renamed")
        name = _clean_name(name, "Folder name")
        await self.metadata_store.update(
            entity, FOLDERS, folder_id, {"name": name, "updatedAt": datetime.now(timezone.utc)}
        )

    async def rename_file(self, entity: EntityRef, file_id: str, name: str) -> None:
        """Rename only; the blob keeps its original storage path."""
        name = _clean_name(name, "File name")
        await self.metadata_store.update(
            entity, FILES, file_id, {"name": name, "updatedAt": datetime.now(timezone.utc)}
        )

    # Uploads

    def start_upload(self, target: UploadTarget, files: Iterable[PendingUpload]) -> UploadBatch:
        return self.uploads.start_batch(target, files)

    async def run_upload(self, batch: UploadBatch, identity_provider) -> UploadResult:
        return await self.uploads.run(batch, identity_provider)

    def submit_upload(self, batch: UploadBatch, identity_provider) -> asyncio.Task:
        return self.tracker.submit(batch, identity_provider)

    # Deletes

    async def delete_file(
        self,
        entity: EntityRef,
        file_id: str,
        actor: Optional[Dict[str, Any]] = None
    ) -> DeletionReport:
        return await self.deletion.delete_file(entity, file_id, actor=actor)

    async def delete_folder(
        self,
        entity: EntityRef,
        folder_id: str,
        actor: Optional[Dict[str, Any]] = None
    ) -> DeletionReport:
        return await self.deletion.delete_folder(entity, folder_id, actor=actor)

    # Downloads

    async def download_file(self, entity: EntityRef, file_id: str) -> DownloadedFile:
        return await self.archive.download_file(entity, file_id)

    async def export_folder(self, entity: EntityRef, folder_id: str) -> FolderArchive:
        return await self.archive.export_folder(entity, folder_id)

    async def shutdown(self) -> None:
        await self.tracker.shutdown()


def create_attachment_service(settings: Optional[Settings] = None) -> AttachmentService:
    """Build the service for the configured STORAGE_BACKEND ("memory" or "azure")."""
    settings = settings or default_settings
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "azure":
        from attachments.services.azure_blob import AzureBlobService
        from attachments.services.azure_table_service import AzureTableService
        from attachments.services.memory_store import InMemoryNotifier
        from attachments.services.service_bus_service import ServiceBusNotifier

        if settings.SERVICE_BUS_CONNECTION_STRING:
            notifier = ServiceBusNotifier(settings)
        else:
            logger.warning("SERVICE_BUS_CONNECTION_STRING not set - notifications are only recorded locally")
            notifier = InMemoryNotifier()
        return AttachmentService(
            metadata_store=AzureTableService(settings),
            blob_store=AzureBlobService(settings),
            notifier=notifier,
            fetcher=HttpxFetcher(),
            settings=settings,
        )

    if backend == "memory":
        from attachments.services.memory_store import (
            InMemoryBlobStore,
            InMemoryMetadataStore,
            InMemoryNotifier,
        )

        blob_store = InMemoryBlobStore(chunk_size=settings.upload_chunk_size_bytes)
        return AttachmentService(
            metadata_store=InMemoryMetadataStore(),
            blob_store=blob_store,
            notifier=InMemoryNotifier(),
            fetcher=blob_store,
            settings=settings,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
