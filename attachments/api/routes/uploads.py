from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from typing import List
from attachments.api.errors import http_error
from attachments.core.dependencies import (
    get_attachment_service,
    get_current_identity,
    get_entity,
    get_identity_provider,
)
from attachments.core.exceptions import AttachmentError, UploadFailed
from attachments.core.security import Identity, IdentityProvider
from attachments.models.entity import EntityRef
from attachments.models.records import ROOT_ID
from attachments.schemas.file import FileResponse
from attachments.schemas.upload import UploadBatchResponse, UploadProgressResponse, UploadStatusResponse
from attachments.services.attachment_service import AttachmentService
from attachments.services.upload_pipeline import PendingUpload, UploadTarget
from attachments.services.upload_tracker import BatchState
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities/{entity_type}/{entity_id}/uploads", tags=["Uploads"])


@router.post("", response_model=UploadBatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_files(
    files: List[UploadFile] = File(...),
    folder_id: str = Form(ROOT_ID),
    wait: bool = Query(False, description="Run the batch inside the request instead of in the background"),
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    service: AttachmentService = Depends(get_attachment_service)
):
    """
    Upload a batch of files into a folder.

    Files over the size cap are left out of the batch (listed in
    ``excluded``). The rest are uploaded one after another; the first file
    that cannot be stored stops the batch, files stored before it remain.
    """
    try:
        location = await service.resolve_location(entity, folder_id)
    except AttachmentError as e:
        raise http_error(e, "Failed to resolve upload folder")

    pending = []
    for upload in files:
        if not upload.filename:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Filename is required"
            )
        content = await upload.read()
        pending.append(PendingUpload(
            name=upload.filename,
            data=content,
            size=len(content),
            content_type=upload.content_type
        ))

    batch = service.start_upload(UploadTarget(entity=entity, location=location), pending)
    accepted = [file.name for file in batch.pending]
    selected = {id(file) for file in batch.pending}
    excluded = [file.name for file in pending if id(file) not in selected]

    if not wait:
        service.submit_upload(batch, identity_provider)
        return {
            "batch_id": batch.id,
            "state": BatchState.RUNNING,
            "accepted": accepted,
            "excluded": excluded,
            "message": f"Uploading {len(accepted)} files.",
        }

    try:
        result = await service.run_upload(batch, identity_provider)
    except UploadFailed as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
    except AttachmentError as e:
        raise http_error(e, "Upload failed. Please try again.")

    return {
        "batch_id": batch.id,
        "state": BatchState.COMPLETED,
        "accepted": accepted,
        "excluded": excluded,
        "committed": [FileResponse.model_validate(record) for record in result.committed],
        "cancelled": result.cancelled,
        "message": f"Uploaded {len(result.committed)} files.",
    }


@router.get("/{batch_id}", response_model=UploadStatusResponse)
async def get_upload_status(
    batch_id: str,
    entity: EntityRef = Depends(get_entity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Per-file progress of a background upload batch."""
    batch_status = service.tracker.status(batch_id)
    if batch_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Upload batch not found"
        )

    return {
        "batch_id": batch_status.batch_id,
        "state": batch_status.state,
        "progress": [UploadProgressResponse.model_validate(item) for item in batch_status.progress],
        "committed": [FileResponse.model_validate(record) for record in batch_status.committed],
        "cancelled": batch_status.cancelled,
        "error": batch_status.error,
    }


@router.delete("/{batch_id}/files/{index}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_upload(
    batch_id: str,
    index: int,
    entity: EntityRef = Depends(get_entity),
    identity: Identity = Depends(get_current_identity),
    service: AttachmentService = Depends(get_attachment_service)
):
    """Cancel one file of a running batch; the other files continue."""
    try:
        running = service.tracker.cancel_file(batch_id, index)
    except IndexError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )

    if not running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Upload batch is not running"
        )

    return None
