"""
Namespace tree over the flat folder and file collections.

Everything here is pure: it builds views (children, breadcrumb paths,
descendants) from the records pushed by the metadata store and checks the
depth rule before a folder creation reaches the store.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging

from attachments.core.exceptions import (
    DepthLimitExceeded,
    RecordNotFound,
    TraversalLimitExceeded,
    TreeCorruptionError,
)
from attachments.models.records import (
    FOLDERS,
    ROOT,
    ROOT_ID,
    FileRecord,
    FolderLocation,
    FolderRecord,
    Location,
    RootLocation,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
DEFAULT_MAX_NODES = 10000


def can_create_folder(current_depth: int) -> bool:
    return current_depth + 1 <= MAX_DEPTH


def ensure_can_create_folder(current_depth: int) -> int:
    """Return the depth a new child would get, or raise DepthLimitExceeded."""
    if not can_create_folder(current_depth):
        raise DepthLimitExceeded(MAX_DEPTH)
    return current_depth + 1


class Breadcrumb:
    """
    Immutable path from the root to the folder being viewed.

    The first entry is always the root; every later entry is exactly one
    level deeper than the one before it.
    """

    def __init__(self, entries: Optional[Sequence[Location]] = None):
        entries = tuple(entries) if entries else (ROOT,)
        if not isinstance(entries[0], RootLocation):
            raise ValueError("A breadcrumb must start at the root")
        self._entries: Tuple[Location, ...] = entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Location]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> Location:
        return self._entries[index]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Breadcrumb) and self._entries == other._entries

    def __repr__(self) -> str:
        return f"Breadcrumb({' / '.join(entry.name for entry in self._entries)})"

    @property
    def entries(self) -> Tuple[Location, ...]:
        return self._entries

    @property
    def current(self) -> Location:
        return self._entries[-1]

    @property
    def current_folder_id(self) -> str:
        return self.current.id

    @property
    def current_depth(self) -> int:
        return self.current.depth

    def navigate(self, folder_id: str, name: str, depth: int) -> "Breadcrumb":
        """Descend into a child of the current folder."""
        if depth != self.current_depth + 1:
            raise TreeCorruptionError(
                folder_id, f"depth {depth} under a folder of depth {self.current_depth}"
            )
        location = FolderLocation(id=folder_id, name=name, depth=depth, parent_id=self.current_folder_id)
        return Breadcrumb(self._entries + (location,))

    def navigate_into(self, folder: FolderRecord) -> "Breadcrumb":
        if folder.parent_id != self.current_folder_id:
            raise ValueError(f"Folder {folder.id} is not a child of {self.current_folder_id}")
        return self.navigate(folder.id, folder.name, folder.depth)

    def navigate_up(self) -> "Breadcrumb":
        if len(self._entries) <= 1:
            return self
        return Breadcrumb(self._entries[:-1])

    def navigate_to(self, index: int) -> "Breadcrumb":
        """Jump back to an ancestor shown at ``index`` (0 is the root)."""
        if not 0 <= index < len(self._entries):
            raise IndexError(f"Breadcrumb index {index} out of range")
        return Breadcrumb(self._entries[:index + 1])


def depth_of(breadcrumb: Breadcrumb) -> int:
    return breadcrumb.current_depth


class NamespaceTree:
    def __init__(
        self,
        folders: Iterable[FolderRecord] = (),
        files: Iterable[FileRecord] = (),
        max_nodes: int = DEFAULT_MAX_NODES
    ):
        self.folders: List[FolderRecord] = list(folders)
        self.files: List[FileRecord] = list(files)
        self.max_nodes = max_nodes
        self._folders_by_id: Dict[str, FolderRecord] = {folder.id: folder for folder in self.folders}
        self._files_by_id: Dict[str, FileRecord] = {file.id: file for file in self.files}
        self._child_folders: Dict[str, List[FolderRecord]] = {}
        self._child_files: Dict[str, List[FileRecord]] = {}
        for folder in self.folders:
            self._child_folders.setdefault(folder.parent_id, []).append(folder)
        for file in self.files:
            self._child_files.setdefault(file.parent_id, []).append(file)

    @classmethod
    def from_documents(
        cls,
        folder_documents: Iterable[Dict[str, Any]],
        file_documents: Iterable[Dict[str, Any]],
        max_nodes: int = DEFAULT_MAX_NODES
    ) -> "NamespaceTree":
        return cls(
            folders=[FolderRecord.from_document(document) for document in folder_documents],
            files=[FileRecord.from_document(document) for document in file_documents],
            max_nodes=max_nodes,
        )

    def folder(self, folder_id: str) -> Optional[FolderRecord]:
        return self._folders_by_id.get(folder_id)

    def file(self, file_id: str) -> Optional[FileRecord]:
        return self._files_by_id.get(file_id)

    def children_of(self, folder_id: str) -> Tuple[List[FolderRecord], List[FileRecord]]:
        """Direct child folders and files, in store order."""
        return (
            list(self._child_folders.get(folder_id, [])),
            list(self._child_files.get(folder_id, [])),
        )

    def location_of(self, folder_id: str) -> Location:
        if folder_id == ROOT_ID:
            return ROOT
        folder = self.folder(folder_id)
        if folder is None:
            raise RecordNotFound(FOLDERS, folder_id)
        return folder.location

    def path_to(self, folder_id: str) -> Breadcrumb:
        """Breadcrumb from the root to ``folder_id`` following parent links."""
        chain: List[Location] = []
        seen = set()
        current_id = folder_id
        while current_id != ROOT_ID:
            if current_id in seen:
                raise TreeCorruptionError(folder_id, f"parent chain revisits {current_id}")
            seen.add(current_id)
            folder = self.folder(current_id)
            if folder is None:
                if current_id == folder_id:
                    raise RecordNotFound(FOLDERS, folder_id)
                raise TreeCorruptionError(folder_id, f"ancestor {current_id} is missing")
            chain.append(folder.location)
            current_id = folder.parent_id

        entries = [ROOT] + list(reversed(chain))
        for expected_depth, location in enumerate(entries):
            if location.depth != expected_depth:
                raise TreeCorruptionError(
                    location.id, f"depth {location.depth} where {expected_depth} was expected"
                )
        return Breadcrumb(entries)

    def _walk(self, folder_id: str) -> Tuple[List[FolderRecord], List[FileRecord]]:
        folders: List[FolderRecord] = []
        files: List[FileRecord] = []
        seen = {folder_id}
        stack = [folder_id]
        while stack:
            current_id = stack.pop()
            child_folders, child_files = self.children_of(current_id)
            for child in child_folders:
                if child.id in seen:
                    raise TreeCorruptionError(child.id, "folder reached twice while walking the tree")
                seen.add(child.id)
                stack.append(child.id)
            folders.extend(child_folders)
            files.extend(child_files)
            if len(folders) + len(files) > self.max_nodes:
                raise TraversalLimitExceeded(self.max_nodes)
        return folders, files

    def descendant_folders(self, folder_id: str) -> List[FolderRecord]:
        return self._walk(folder_id)[0]

    def descendant_files(self, folder_id: str) -> List[FileRecord]:
        """Every file reachable from ``folder_id`` through any chain of parent links."""
        return self._walk(folder_id)[1]

    def validate(self) -> None:
        """
        Check every folder's depth against its parent and its parent chain for cycles.

        Orphans (parent already deleted) are tolerated: an interrupted
        recursive delete leaves them behind and a retry removes them.
        """
        for folder in self.folders:
            seen = set()
            current = folder
            while current is not None:
                if current.id in seen:
                    raise TreeCorruptionError(folder.id, f"parent chain revisits {current.id}")
                seen.add(current.id)
                current = self.folder(current.parent_id)

            if folder.parent_id == ROOT_ID:
                expected_depth = 1
            else:
                parent = self.folder(folder.parent_id)
                if parent is None:
                    logger.warning(f"Orphaned folder {folder.id}: parent {folder.parent_id} is missing")
                    continue
                expected_depth = parent.depth + 1
            if folder.depth != expected_depth:
                raise TreeCorruptionError(
                    folder.id, f"depth {folder.depth} where {expected_depth} was expected"
                )
            if folder.depth > MAX_DEPTH:
                raise TreeCorruptionError(folder.id, f"depth {folder.depth} exceeds {MAX_DEPTH}")
