"""
Recursive deletion of files and folders across metadata and blob storage.

A folder delete is a sequence of independent, idempotent calls: first the
subtree is read fresh from the store, then every folder is removed
children-before-parent, each one right after its own files. Nothing is
rolled back when a call fails; deleting the same folder again finishes
the job.
"""

from pydantic import BaseModel
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from attachments.core.exceptions import (
    PartialDeleteFailure,
    RootFolderError,
    TraversalLimitExceeded,
)
from attachments.models.entity import EntityRef
from attachments.models.records import FILES, FOLDERS, ROOT_ID, FileRecord
from attachments.services.outbox import ATTACHMENT_DELETED, FOLDER_DELETED
from attachments.services.tree import DEFAULT_MAX_NODES

logger = logging.getLogger(__name__)


class DeletionReport(BaseModel):
    files_deleted: int = 0
    folders_deleted: int = 0
    blob_failures: List[str] = []


class DeletionEngine:
    def __init__(self, metadata_store, blob_store, outbox, max_nodes: int = DEFAULT_MAX_NODES):
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.outbox = outbox
        self.max_nodes = max_nodes

    async def delete_file(
        self,
        entity: EntityRef,
        file_id: str,
        actor: Optional[Dict[str, Any]] = None
    ) -> DeletionReport:
        """Delete one file's blob (best effort) and then its record. A missing record is a no-op."""
        report = DeletionReport()
        document = await self.metadata_store.get(entity, FILES, file_id)
        if document is None:
            logger.info(f"File {file_id} already deleted for {entity.partition_key}")
            return report

        await self._delete_file_record(entity, FileRecord.from_document(document), report, actor)
        return report

    async def delete_folder(
        self,
        entity: EntityRef,
        folder_id: str,
        actor: Optional[Dict[str, Any]] = None
    ) -> DeletionReport:
        """
        Delete a folder and everything transitively beneath it.

        Every removed file and descendant folder gets its own activity event;
        the event for ``folder_id`` itself also carries the totals.

        Raises:
            RootFolderError: folder_id is the root sentinel
            TraversalLimitExceeded: the subtree is larger than max_nodes; nothing was deleted
            PartialDeleteFailure: a metadata delete failed; some descendants may already be gone
        """
        if folder_id == ROOT_ID:
            raise RootFolderError("deleted")

        report = DeletionReport()
        try:
            document = await self.metadata_store.get(entity, FOLDERS, folder_id)
            plan = await self._plan(entity, folder_id)
            for current_id, name, files in plan:
                for record in files:
                    await self._delete_file_record(entity, record, report, actor)
                await self.metadata_store.delete(entity, FOLDERS, current_id)
                report.folders_deleted += 1
                if current_id != folder_id:
                    await self.outbox.log_activity(
                        entity,
                        FOLDER_DELETED,
                        f'Deleted folder "{name}"',
                        actor=actor,
                        metadata={"folderId": current_id, "parentFolderId": folder_id},
                    )
        except TraversalLimitExceeded:
            raise
        except Exception as e:
            logger.error(
                f"Delete of folder {folder_id} stopped after {report.files_deleted} files "
                f"and {report.folders_deleted} folders: {str(e)}",
                exc_info=True
            )
            raise PartialDeleteFailure(folder_id, report.files_deleted, report.folders_deleted, e) from e

        logger.info(
            f"Deleted folder {folder_id} for {entity.partition_key}: "
            f"{report.files_deleted} files, {report.folders_deleted} folders"
        )
        if document is not None:
            await self.outbox.log_activity(
                entity,
                FOLDER_DELETED,
                f'Deleted folder "{document.get("name", folder_id)}"',
                actor=actor,
                metadata={
                    "folderId": folder_id,
                    "filesDeleted": report.files_deleted,
                    "foldersDeleted": report.folders_deleted,
                },
            )
        return report

    async def _plan(self, entity: EntityRef, folder_id: str) -> List[Tuple[str, str, List[FileRecord]]]:
        """
        Read the subtree under ``folder_id`` and return (folder id, name, files)
        triples ordered so that every folder comes after all of its descendants.
        """
        order: List[Tuple[str, str, List[FileRecord]]] = []
        visited: Set[str] = set()
        queue: List[Tuple[str, str]] = [(folder_id, folder_id)]
        nodes = 0
        while queue:
            current_id, name = queue.pop(0)
            if current_id in visited:
                logger.warning(f"Folder {current_id} reached twice while deleting {folder_id}; skipping")
                continue
            visited.add(current_id)

            files = [
                FileRecord.from_document(document)
                for document in await self.metadata_store.query(entity, FILES, {"parentId": current_id})
            ]
            child_folders = await self.metadata_store.query(entity, FOLDERS, {"parentId": current_id})
            nodes += len(files) + len(child_folders)
            if nodes > self.max_nodes:
                raise TraversalLimitExceeded(self.max_nodes)

            order.append((current_id, name, files))
            queue.extend((child["id"], child.get("name", child["id"])) for child in child_folders)

        # Breadth-first order reversed puts children before their parents
        order.reverse()
        return order

    async def _delete_file_record(
        self,
        entity: EntityRef,
        record: FileRecord,
        report: DeletionReport,
        actor: Optional[Dict[str, Any]]
    ) -> None:
        path = record.blob_path
        if path:
            try:
                await self.blob_store.delete(path)
            except Exception as e:
                # Orphaned blobs are reclaimed out of band
                logger.warning(f"Could not delete blob {path}: {str(e)}")
                report.blob_failures.append(path)

        await self.metadata_store.delete(entity, FILES, record.id)
        report.files_deleted += 1

        metadata = {"fileId": record.id, "folderId": record.parent_id}
        await self.outbox.log_activity(
            entity,
            ATTACHMENT_DELETED,
            f'Deleted file "{record.name}"',
            actor=actor,
            metadata=metadata,
        )
        await self.outbox.attachment_deleted(entity, record.name, actor=actor, metadata=metadata)
