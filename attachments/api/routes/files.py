from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from urllib.parse import quote
from attachments.api.errors import http_error
from attachments.core.dependencies import get_attachment_service, get_current_identity, get_entity
from attachments.core.exceptions import AttachmentError
from attachments.core.security import Identity
from attachments.models.entity import EntityRef
from attachments.schemas.file import FileRename
from attachments.services.attachment_service import AttachmentService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities/{entity_type}/{entity_id}/files", tags=["Files"])


def attachment_response(file_name: str, content: bytes, media_type: str) -> Response:
    """Bytes delivered as a download named ``file_name``."""
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"}
    )


@router.patch("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def rename_file(
    file_id: str,
    file_data: FileRename,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Rename a file. Its storage path is unchanged."""
    try:
        await service.rename_file(entity, file_id, file_data.name)
    except AttachmentError as e:
        raise http_error(e, "Failed to rename file")

    return None


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: str,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Delete a file's blob and its record. Deleting a missing file succeeds."""
    try:
        await service.delete_file(entity, file_id, actor=identity.actor)
    except AttachmentError as e:
        raise http_error(e, "Failed to delete file")
    except Exception as e:
        logger.error(f"Error deleting file {file_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete file"
        )

    return None


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    entity: EntityRef = Depends(get_entity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Download a single file."""
    try:
        downloaded = await service.download_file(entity, file_id)
    except AttachmentError as e:
        raise http_error(e, "Failed to download file")
    except Exception as e:
        logger.error(f"Error downloading file {file_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to download file"
        )

    return attachment_response(downloaded.name, downloaded.content, downloaded.content_type)
