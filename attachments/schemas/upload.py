from pydantic import BaseModel
from typing import List, Optional
from attachments.schemas.file import FileResponse
from attachments.services.upload_pipeline import UploadStatus
from attachments.services.upload_tracker import BatchState


class UploadProgressResponse(BaseModel):
    name: str
    percent: int
    status: UploadStatus

    class Config:
        from_attributes = True


class UploadBatchResponse(BaseModel):
    batch_id: str
    state: BatchState
    accepted: List[str]
    excluded: List[str] = []
    committed: List[FileResponse] = []
    cancelled: List[str] = []
    message: str


class UploadStatusResponse(BaseModel):
    batch_id: str
    state: BatchState
    progress: List[UploadProgressResponse] = []
    committed: List[FileResponse] = []
    cancelled: List[str] = []
    error: Optional[str] = None
