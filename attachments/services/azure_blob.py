from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import (
    BlobBlock,
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)
from attachments.core.config import Settings, settings as default_settings
from attachments.core.exceptions import BlobNotFound
from attachments.services.transfer import ResumableTransfer
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


class AzureBlobService:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.blob_service_client = BlobServiceClient.from_connection_string(
            self.settings.AZURE_STORAGE_CONNECTION_STRING
        )
        self.container = self.settings.ATTACHMENTS_CONTAINER
        self.chunk_size = self.settings.upload_chunk_size_bytes

    async def ensure_container_exists(self):
        """Ensure the attachments container exists (non-blocking async)."""
        def _ensure_container():
            """Sync function to be run in thread pool."""
            try:
                self.blob_service_client.create_container(self.container)
                logger.info(f"Created container: {self.container}")
            except ResourceExistsError:
                pass

        # Run sync operations in thread pool to avoid blocking
        await asyncio.to_thread(_ensure_container)

    def _blob_client(self, path: str):
        return self.blob_service_client.get_blob_client(
            container=self.container,
            blob=path
        )

    def put_resumable(self, path: str, data: bytes, content_type: Optional[str] = None) -> ResumableTransfer:
        """
        Prepare a block-by-block upload.

        Each chunk is staged as an uncommitted block; the blob only becomes
        visible once the block list is committed.
        """
        return ResumableTransfer(
            path=path,
            data=data,
            stage_block=self._stage_block,
            commit_blocks=self._commit_blocks,
            chunk_size=self.chunk_size,
            content_type=content_type,
        )

    async def _stage_block(self, path: str, block_id: str, chunk: bytes) -> None:
        await asyncio.to_thread(
            self._blob_client(path).stage_block,
            block_id=block_id,
            data=chunk,
            length=len(chunk)
        )

    async def _commit_blocks(self, path: str, block_ids: List[str], content_type: Optional[str]) -> None:
        content_settings = ContentSettings(content_type=content_type or "application/octet-stream")
        await asyncio.to_thread(
            self._blob_client(path).commit_block_list,
            [BlobBlock(block_id=block_id) for block_id in block_ids],
            content_settings=content_settings
        )
        logger.info(f"Uploaded file to blob storage: {path}")

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Single-shot upload of the whole object."""
        content_settings = ContentSettings(content_type=content_type or "application/octet-stream")
        try:
            await asyncio.to_thread(
                self._blob_client(path).upload_blob,
                data,
                content_settings=content_settings,
                overwrite=True
            )
            logger.info(f"Uploaded file to blob storage: {path}")
        except Exception as e:
            logger.error(f"Error uploading file to blob storage: {str(e)}")
            raise

    async def get(self, path: str) -> bytes:
        """Download a blob's content."""
        def _download():
            return self._blob_client(path).download_blob().readall()

        try:
            return await asyncio.to_thread(_download)
        except ResourceNotFoundError:
            raise BlobNotFound(path)

    async def delete(self, path: str) -> None:
        """Delete a blob. Idempotent: a missing blob is not an error."""
        try:
            await asyncio.to_thread(self._blob_client(path).delete_blob)
            logger.info(f"Deleted blob: {path}")
        except ResourceNotFoundError:
            logger.debug(f"Blob already deleted: {path}")

    async def url_for(self, path: str) -> str:
        """
        Get a retrieval URL for a blob.

        With an account key the URL carries a read-only SAS token valid for
        DOWNLOAD_URL_EXPIRY_HOURS; otherwise the plain blob URL is returned.
        """
        blob_client = self._blob_client(path)
        exists = await asyncio.to_thread(blob_client.exists)
        if not exists:
            raise BlobNotFound(path)

        if not self.settings.AZURE_STORAGE_ACCOUNT_KEY:
            return blob_client.url

        sas_token = generate_blob_sas(
            account_name=blob_client.account_name,
            container_name=self.container,
            blob_name=path,
            account_key=self.settings.AZURE_STORAGE_ACCOUNT_KEY,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(hours=self.settings.DOWNLOAD_URL_EXPIRY_HOURS)
        )
        return f"{blob_client.url}?{sas_token}"
