"""
Domain errors for the attachment tree.

Routes translate these into HTTP responses; auxiliary failures
(notifications, activity log) are raised by their collaborators and
swallowed by the outbox.
"""

from typing import List, Optional


class AttachmentError(Exception):
    """Base class for every attachment subsystem error."""


class DepthLimitExceeded(AttachmentError):
    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super().__init__(f"Maximum folder depth ({max_depth}) reached.")


class InvalidName(AttachmentError):
    def __init__(self, kind: str = "Name"):
        super().__init__(f"{kind} must not be empty.")


class RecordNotFound(AttachmentError):
    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"No record '{record_id}' in {collection}")


class RootFolderError(AttachmentError):
    def __init__(self, action: str):
        super().__init__(f"The root folder cannot be {action}.")


class AuthenticationRequired(AttachmentError):
    def __init__(self, message: str = "Sign-in is required before uploading files."):
        super().__init__(message)


class BlobNotFound(AttachmentError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Blob not found: {path}")


class TransferCancelled(AttachmentError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Transfer cancelled: {path}")


class UploadTransferFailed(AttachmentError):
    """Resumable transfer failed for a reason other than cancellation."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Resumable transfer failed for {path}: {cause}")


class UploadFailed(AttachmentError):
    """A file could not be stored; the rest of the batch was not attempted."""

    def __init__(self, file_name: str, committed: Optional[List] = None):
        self.file_name = file_name
        self.committed = committed or []
        super().__init__(f"Upload failed at '{file_name}'. Please try again.")


class NotDownloadable(AttachmentError):
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(
            f"File '{file_name}' is not downloadable (no storage path). "
            "Upload a new version to enable download."
        )


class PartialDeleteFailure(AttachmentError):
    """
    A delete call failed mid-recursion.

    Completed deletes are not rolled back; calling delete again on the same
    folder finishes the job.
    """

    def __init__(self, folder_id: str, files_deleted: int, folders_deleted: int, cause: Exception):
        self.folder_id = folder_id
        self.files_deleted = files_deleted
        self.folders_deleted = folders_deleted
        self.cause = cause
        super().__init__(f"Delete failed for folder {folder_id}: {cause}")


class TraversalLimitExceeded(AttachmentError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Folder tree exceeds the traversal limit of {limit} entries")


class TreeCorruptionError(AttachmentError):
    def __init__(self, folder_id: str, reason: str):
        self.folder_id = folder_id
        super().__init__(f"Folder tree is corrupt at {folder_id}: {reason}")


class NotificationDeliveryFailure(AttachmentError):
    pass


class ActivityLogFailure(AttachmentError):
    pass
