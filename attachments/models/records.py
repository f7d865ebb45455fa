from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

# Synthetic id of the tree root; never persisted
ROOT_ID = "root"

# Collection names inside an entity's metadata partition
FOLDERS = "folders"
FILES = "files"
MEMBERS = "members"
ACTIVITIES = "activities"


class RootLocation(BaseModel):
    """The universal ancestor of every folder and file. Depth 0, never stored."""

    id: Literal["root"] = ROOT_ID
    name: str = "Root"
    depth: Literal[0] = 0

    class Config:
        frozen = True


class FolderLocation(BaseModel):
    id: str
    name: str
    depth: int = Field(..., ge=1)
    parent_id: str = ROOT_ID

    class Config:
        frozen = True

    @field_validator("id")
    @classmethod
    def not_root(cls, value: str) -> str:
        if value == ROOT_ID:
            raise ValueError("A folder cannot use the root id")
        return value


Location = Union[RootLocation, FolderLocation]

ROOT = RootLocation()


class FolderRecord(BaseModel):
    id: str
    name: str
    parent_id: str = Field(ROOT_ID, alias="parentId")
    depth: int = 1
    size: int = 0  # informational only
    entity_type: Optional[str] = Field(None, alias="entityType")
    entity_id: Optional[str] = Field(None, alias="entityId")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "FolderRecord":
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)

    @property
    def location(self) -> FolderLocation:
        return FolderLocation(id=self.id, name=self.name, depth=self.depth, parent_id=self.parent_id)


class FileRecord(BaseModel):
    id: str
    name: str
    size: int = 0
    type: str = ""
    parent_id: str = Field(ROOT_ID, alias="parentId")
    storage_path: Optional[str] = Field(None, alias="storagePath")
    legacy_path: Optional[str] = Field(None, alias="path")  # pre-storagePath records
    download_url: Optional[str] = Field(None, alias="downloadURL")
    depth: int = 0  # display only
    entity_type: Optional[str] = Field(None, alias="entityType")
    entity_id: Optional[str] = Field(None, alias="entityId")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "FileRecord":
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)

    @property
    def blob_path(self) -> Optional[str]:
        return self.storage_path or self.legacy_path


def file_type_of(file_name: str) -> str:
    """Lower-cased extension of a file name, "" when there is none."""
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()
