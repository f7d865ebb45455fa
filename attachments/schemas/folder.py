from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from attachments.models.records import ROOT_ID
from attachments.schemas.file import FileResponse


class FolderCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: str = Field(ROOT_ID, description="Parent folder id, or \"root\" for a top-level folder")


class FolderRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class FolderResponse(BaseModel):
    id: str
    name: str
    parent_id: str
    depth: int
    size: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BreadcrumbEntry(BaseModel):
    id: str
    name: str
    depth: int

    class Config:
        from_attributes = True


class FolderChildrenResponse(BaseModel):
    folder_id: str
    folders: List[FolderResponse]
    files: List[FileResponse]


class FolderDeleteResponse(BaseModel):
    files_deleted: int
    folders_deleted: int
    message: str


class TreeSnapshot(BaseModel):
    """Full flat folder/file collections, pushed on every change."""

    folders: List[FolderResponse]
    files: List[FileResponse]
