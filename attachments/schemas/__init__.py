from attachments.schemas.file import FileRename, FileResponse
from attachments.schemas.folder import (
    BreadcrumbEntry,
    FolderChildrenResponse,
    FolderCreate,
    FolderDeleteResponse,
    FolderRename,
    FolderResponse,
    TreeSnapshot,
)
from attachments.schemas.upload import (
    UploadBatchResponse,
    UploadProgressResponse,
    UploadStatusResponse,
)

__all__ = [
    "FileRename",
    "FileResponse",
    "BreadcrumbEntry",
    "FolderChildrenResponse",
    "FolderCreate",
    "FolderDeleteResponse",
    "FolderRename",
    "FolderResponse",
    "TreeSnapshot",
    "UploadBatchResponse",
    "UploadProgressResponse",
    "UploadStatusResponse",
]
