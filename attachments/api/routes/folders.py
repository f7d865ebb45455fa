from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
from attachments.api.errors import http_error
from attachments.api.routes.files import attachment_response
from attachments.core.dependencies import get_attachment_service, get_current_identity, get_entity
from attachments.core.exceptions import AttachmentError, PartialDeleteFailure
from attachments.core.security import Identity
from attachments.models.entity import EntityRef
from attachments.schemas.file import FileResponse
from attachments.schemas.folder import (
    BreadcrumbEntry,
    FolderChildrenResponse,
    FolderCreate,
    FolderDeleteResponse,
    FolderRename,
    FolderResponse,
)
from attachments.services.attachment_service import AttachmentService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities/{entity_type}/{entity_id}/folders", tags=["Folders"])


@router.post("", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    folder_data: FolderCreate,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """
    Create a folder under ``parent_id`` ("root" for a top-level folder).

    Refused with 400 when the parent is already at the maximum depth.
    """
    try:
        parent = await service.resolve_location(entity, folder_data.parent_id)
        folder = await service.create_folder(entity, parent, folder_data.name, actor=identity.actor)
    except AttachmentError as e:
        raise http_error(e, "Failed to create folder")

    return FolderResponse.model_validate(folder)


@router.get("/{folder_id}/children", response_model=FolderChildrenResponse)
async def list_children(
    folder_id: str,
    entity: EntityRef = Depends(get_entity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """List the folders and files directly inside a folder."""
    try:
        folders, files = await service.children(entity, folder_id)
    except AttachmentError as e:
        raise http_error(e, "Failed to list folder")

    return {
        "folder_id": folder_id,
        "folders": [FolderResponse.model_validate(folder) for folder in folders],
        "files": [FileResponse.model_validate(file) for file in files],
    }


@router.get("/{folder_id}/path", response_model=List[BreadcrumbEntry])
async def get_path(
    folder_id: str,
    entity: EntityRef = Depends(get_entity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Breadcrumb from the root to a folder."""
    try:
        breadcrumb = await service.path_to(entity, folder_id)
    except AttachmentError as e:
        raise http_error(e, "Failed to resolve folder path")

    return [BreadcrumbEntry.model_validate(location) for location in breadcrumb]


@router.patch("/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def rename_folder(
    folder_id: str,
    folder_data: FolderRename,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Rename a folder."""
    try:
        await service.rename_folder(entity, folder_id, folder_data.name)
    except AttachmentError as e:
        raise http_error(e, "Failed to rename folder")

    return None


@router.delete("/{folder_id}", response_model=FolderDeleteResponse)
async def delete_folder(
    folder_id: str,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """
    Delete a folder with every folder and file beneath it.

    Not atomic: on failure part of the subtree may already be gone.
    Repeating the request finishes the job.
    """
    try:
        report = await service.delete_folder(entity, folder_id, actor=identity.actor)
    except PartialDeleteFailure:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete folder. Some items may already be removed; please try again."
        )
    except AttachmentError as e:
        raise http_error(e, "Failed to delete folder")

    return {
        "files_deleted": report.files_deleted,
        "folders_deleted": report.folders_deleted,
        "message": "Folder deleted successfully",
    }


@router.get("/{folder_id}/archive")
async def download_folder(
    folder_id: str,
    entity: EntityRef = Depends(get_entity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Download every file beneath a folder as one zip archive."""
    try:
        archive = await service.export_folder(entity, folder_id)
    except AttachmentError as e:
        raise http_error(e, "Failed to build archive")

    return attachment_response(archive.name, archive.content, "application/zip")
