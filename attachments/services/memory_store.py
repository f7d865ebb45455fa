"""
In-process metadata and blob stores.

Used for local development (STORAGE_BACKEND=memory) and tests. They expose
the same async surface as the Azure-backed services.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncio
import copy
import logging
import uuid

from attachments.core.exceptions import BlobNotFound, RecordNotFound
from attachments.models.entity import EntityRef
from attachments.services.transfer import ResumableTransfer

logger = logging.getLogger(__name__)

OnChange = Callable[[List[Dict[str, Any]]], None]

MEMORY_URL_PREFIX = "memory://"


class InMemoryMetadataStore:
    def __init__(self):
        self._collections: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self._subscribers: Dict[Tuple[str, str], List[OnChange]] = {}

    def _records(self, entity: EntityRef, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault((entity.partition_key, collection), {})

    def _snapshot(self, entity: EntityRef, collection: str) -> List[Dict[str, Any]]:
        return [
            {"id": record_id, **copy.deepcopy(document)}
            for record_id, document in self._records(entity, collection).items()
        ]

    def _publish(self, entity: EntityRef, collection: str) -> None:
        listeners = list(self._subscribers.get((entity.partition_key, collection), []))
        for on_change in listeners:
            try:
                on_change(self._snapshot(entity, collection))
            except Exception as e:
                logger.error(f"Subscriber for {collection} failed: {e}", exc_info=True)

    async def create(self, entity: EntityRef, collection: str, document: Dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        self._records(entity, collection)[record_id] = copy.deepcopy(document)
        self._publish(entity, collection)
        return record_id

    async def get(self, entity: EntityRef, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        document = self._records(entity, collection).get(record_id)
        if document is None:
            return None
        return {"id": record_id, **copy.deepcopy(document)}

    async def update(self, entity: EntityRef, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        records = self._records(entity, collection)
        if record_id not in records:
            raise RecordNotFound(collection, record_id)
        records[record_id].update(copy.deepcopy(patch))
        self._publish(entity, collection)

    async def delete(self, entity: EntityRef, collection: str, record_id: str) -> None:
        """Idempotent: deleting a missing record is not an error."""
        if self._records(entity, collection).pop(record_id, None) is not None:
            self._publish(entity, collection)

    async def query(
        self,
        entity: EntityRef,
        collection: str,
        where: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        where = where or {}
        return [
            record for record in self._snapshot(entity, collection)
            if all(record.get(field) == value for field, value in where.items())
        ]

    def subscribe(self, entity: EntityRef, collection: str, on_change: OnChange) -> Callable[[], None]:
        """Push the current records now and after every mutation until unsubscribed."""
        key = (entity.partition_key, collection)
        self._subscribers.setdefault(key, []).append(on_change)
        on_change(self._snapshot(entity, collection))

        def unsubscribe() -> None:
            listeners = self._subscribers.get(key, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return unsubscribe

    def subscriber_count(self, entity: EntityRef, collection: str) -> int:
        return len(self._subscribers.get((entity.partition_key, collection), []))


class InMemoryBlobStore:
    def __init__(self, chunk_size: int = 4 * 1024 * 1024):
        self.chunk_size = chunk_size
        self._objects: Dict[str, bytes] = {}
        self._content_types: Dict[str, str] = {}
        self._staged: Dict[str, Dict[str, bytes]] = {}

    def exists(self, path: str) -> bool:
        return path in self._objects

    def put_resumable(self, path: str, data: bytes, content_type: Optional[str] = None) -> ResumableTransfer:
        return ResumableTransfer(
            path=path,
            data=data,
            stage_block=self._stage_block,
            commit_blocks=self._commit_blocks,
            chunk_size=self.chunk_size,
            content_type=content_type,
        )

    async def _stage_block(self, path: str, block_id: str, chunk: bytes) -> None:
        await asyncio.sleep(0)
        self._staged.setdefault(path, {})[block_id] = bytes(chunk)

    async def _commit_blocks(self, path: str, block_ids: List[str], content_type: Optional[str]) -> None:
        staged = self._staged.pop(path, {})
        self._objects[path] = b"".join(staged[block_id] for block_id in block_ids)
        self._content_types[path] = content_type or "application/octet-stream"

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self._objects[path] = bytes(data)
        self._content_types[path] = content_type or "application/octet-stream"

    async def get(self, path: str) -> bytes:
        if path not in self._objects:
            raise BlobNotFound(path)
        return self._objects[path]

    async def delete(self, path: str) -> None:
        """Idempotent: deleting a missing object is not an error."""
        self._objects.pop(path, None)
        self._content_types.pop(path, None)
        self._staged.pop(path, None)

    async def url_for(self, path: str) -> str:
        if path not in self._objects:
            raise BlobNotFound(path)
        return f"{MEMORY_URL_PREFIX}{path}"

    async def fetch(self, url: str) -> bytes:
        """Resolve a URL produced by url_for back to its bytes."""
        if not url.startswith(MEMORY_URL_PREFIX):
            raise ValueError(f"Not an in-memory blob URL: {url}")
        return await self.get(url[len(MEMORY_URL_PREFIX):])


class InMemoryNotifier:
    """Collects published notification events instead of sending them."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def publish(self, event: Dict[str, Any]) -> None:
        self.events.append(event)
        logger.info(f"Recorded {event['type']} notification for {event['entityType']}/{event['entityId']}")
