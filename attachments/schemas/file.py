from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class FileRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class FileResponse(BaseModel):
    id: str
    name: str
    size: int
    type: str
    parent_id: str
    storage_path: Optional[str] = None
    download_url: Optional[str] = None
    depth: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
