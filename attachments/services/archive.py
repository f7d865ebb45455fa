"""
Downloads: a single file, or every file beneath a folder bundled as a zip.

Read-only over the tree. Each archive member is fetched independently and a
member that cannot be fetched is left out rather than failing the archive.
"""

from pydantic import BaseModel
from typing import Dict, List, Optional
import io
import logging
import mimetypes
import zipfile

import httpx

from attachments.core.exceptions import NotDownloadable, RecordNotFound
from attachments.models.entity import EntityRef
from attachments.models.records import FILES, FOLDERS, FileRecord
from attachments.services.tree import DEFAULT_MAX_NODES, NamespaceTree

logger = logging.getLogger(__name__)


class DownloadedFile(BaseModel):
    name: str
    content: bytes
    content_type: str = "application/octet-stream"


class FolderArchive(BaseModel):
    name: str
    content: bytes
    members: List[str] = []
    skipped: List[str] = []


class HttpxFetcher:
    """Fetches retrieval URLs (e.g. SAS blob URLs) over HTTP."""

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout

    async def fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content


class ArchiveExporter:
    def __init__(self, metadata_store, blob_store, fetcher, max_nodes: int = DEFAULT_MAX_NODES):
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.fetcher = fetcher
        self.max_nodes = max_nodes

    async def read_file(self, record: FileRecord) -> bytes:
        """
        Bytes of one file: the cached download URL first, then the blob at
        its storage path. A cached URL that no longer works (e.g. an expired
        SAS token) falls back to the storage path.

        Raises:
            NotDownloadable: the record has neither a URL nor a storage path
            BlobNotFound: the blob at the storage path is gone
        """
        if record.download_url:
            try:
                return await self.fetcher.fetch(record.download_url)
            except Exception as e:
                if not record.blob_path:
                    raise
                logger.warning(
                    f"Cached URL for {record.name} ({record.id}) failed, "
                    f"reading {record.blob_path} instead: {str(e)}"
                )
        if record.blob_path:
            return await self.blob_store.get(record.blob_path)
        raise NotDownloadable(record.name)

    async def download_file(self, entity: EntityRef, file_id: str) -> DownloadedFile:
        document = await self.metadata_store.get(entity, FILES, file_id)
        if document is None:
            raise RecordNotFound(FILES, file_id)

        record = FileRecord.from_document(document)
        content = await self.read_file(record)
        return DownloadedFile(
            name=record.name,
            content=content,
            content_type=mimetypes.guess_type(record.name)[0] or "application/octet-stream",
        )

    async def export_folder(self, entity: EntityRef, folder_id: str) -> FolderArchive:
        """
        Zip every file reachable from ``folder_id`` by any chain of parent links.

        Members are keyed by file name; when two files share a name the one
        fetched last wins.

        Raises:
            RecordNotFound: the folder does not exist
            TraversalLimitExceeded: the subtree is larger than max_nodes
            TreeCorruptionError: the subtree contains a cycle
        """
        tree = NamespaceTree.from_documents(
            await self.metadata_store.query(entity, FOLDERS),
            await self.metadata_store.query(entity, FILES),
            max_nodes=self.max_nodes,
        )
        location = tree.location_of(folder_id)

        contents: Dict[str, bytes] = {}
        skipped: List[str] = []
        for record in tree.descendant_files(folder_id):
            content = await self._fetch_member(record)
            if content is None:
                skipped.append(record.name)
                continue
            contents[record.name] = content

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for name, content in contents.items():
                archive.writestr(name, content)

        archive_name = f"{location.name or 'folder'}.zip"
        logger.info(
            f"Exported {archive_name} for {entity.partition_key}: "
            f"{len(contents)} files, {len(skipped)} skipped"
        )
        return FolderArchive(
            name=archive_name,
            content=buffer.getvalue(),
            members=list(contents),
            skipped=skipped,
        )

    async def _fetch_member(self, record: FileRecord) -> Optional[bytes]:
        """Archive members always come from the storage path; the cached URL is only used without one."""
        try:
            if record.blob_path:
                return await self.blob_store.get(record.blob_path)
            if record.download_url:
                return await self.fetcher.fetch(record.download_url)
            raise NotDownloadable(record.name)
        except NotDownloadable:
            logger.warning(f"Skipping {record.name} ({record.id}): no storage path")
        except Exception as e:
            logger.warning(f"Skipping {record.name} ({record.id}): {str(e)}")
        return None
