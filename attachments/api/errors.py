from fastapi import HTTPException, status
from attachments.core.exceptions import (
    AttachmentError,
    AuthenticationRequired,
    DepthLimitExceeded,
    InvalidName,
    NotDownloadable,
    RecordNotFound,
    RootFolderError,
    TraversalLimitExceeded,
    TreeCorruptionError,
)

_STATUS_BY_ERROR = (
    (DepthLimitExceeded, status.HTTP_400_BAD_REQUEST),
    (InvalidName, status.HTTP_400_BAD_REQUEST),
    (RootFolderError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationRequired, status.HTTP_401_UNAUTHORIZED),
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (TraversalLimitExceeded, status.HTTP_409_CONFLICT),
    (TreeCorruptionError, status.HTTP_409_CONFLICT),
    (NotDownloadable, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def http_error(error: AttachmentError, default_detail: str = "Attachment operation failed") -> HTTPException:
    """Translate a domain error into the single message shown to the user."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
            return HTTPException(status_code=status_code, detail=str(error), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=default_detail)
