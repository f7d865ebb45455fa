"""
Best-effort side effects of attachment operations.

Notifications and activity events are sent only after the primary
operation has committed. Every failure is logged and discarded here so it
can never change the outcome of an upload, rename or delete.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from attachments.core.exceptions import ActivityLogFailure
from attachments.models.entity import EntityRef
from attachments.models.records import ACTIVITIES, MEMBERS

logger = logging.getLogger(__name__)

ATTACHMENT_ADDED = "attachment_added"
ATTACHMENT_DELETED = "attachment_deleted"
FOLDER_CREATED = "folder_created"
FOLDER_DELETED = "folder_deleted"


def build_notification_event(
    event_type: str,
    user_ids: List[str],
    entity: EntityRef,
    file_name: str,
    actor: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    return {
        "type": event_type,
        "userIds": list(user_ids),
        "entityType": entity.entity_type.value,
        "entityId": entity.entity_id,
        "fileName": file_name,
        "actor": actor or {},
        "metadata": metadata or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class BestEffortOutbox:
    def __init__(self, metadata_store, notifier):
        self.metadata_store = metadata_store
        self.notifier = notifier

    async def subscribers_of(self, entity: EntityRef) -> List[str]:
        """User ids subscribed to the entity (its ``members`` collection)."""
        members = await self.metadata_store.query(entity, MEMBERS)
        return [str(member["userId"]) for member in members if member.get("userId")]

    async def _notify(
        self,
        event_type: str,
        entity: EntityRef,
        file_name: str,
        actor: Optional[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]]
    ) -> bool:
        try:
            user_ids = await self.subscribers_of(entity)
            if not user_ids:
                logger.debug(f"No subscribers for {entity.partition_key}, skipping {event_type}")
                return False
            await self.notifier.publish(
                build_notification_event(event_type, user_ids, entity, file_name, actor, metadata)
            )
            return True
        except Exception as e:
            # Don't raise - the attachment operation already succeeded
            logger.error(
                f"Failed to send {event_type} notification for {entity.partition_key}: {str(e)}",
                exc_info=True
            )
            return False

    async def attachment_added(
        self,
        entity: EntityRef,
        file_name: str,
        actor: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        return await self._notify(ATTACHMENT_ADDED, entity, file_name, actor, metadata)

    async def attachment_deleted(
        self,
        entity: EntityRef,
        file_name: str,
        actor: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        return await self._notify(ATTACHMENT_DELETED, entity, file_name, actor, metadata)

    async def log_activity(
        self,
        entity: EntityRef,
        event_type: str,
        message: str,
        actor: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        try:
            await self._write_activity(entity, {
                "type": event_type,
                "message": message,
                "actor": actor or {"name": "Unknown User", "email": ""},
                "metadata": metadata or {},
                "createdAt": datetime.now(timezone.utc),
            })
            return True
        except ActivityLogFailure as e:
            logger.error(f"logActivity failed for {entity.partition_key}: {e.__cause__}", exc_info=True)
            return False

    async def _write_activity(self, entity: EntityRef, event: Dict[str, Any]) -> None:
        try:
            await self.metadata_store.create(entity, ACTIVITIES, event)
        except Exception as e:
            raise ActivityLogFailure(str(e)) from e
