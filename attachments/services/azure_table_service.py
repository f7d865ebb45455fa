"""
Azure Table Storage Service for Attachment Metadata

Folder, file, member and activity records live in one table per collection.
Each owning entity gets its own partition, so every query is a single
partition scan.

Table Schema (all tables):
- PartitionKey: "{entityCollection}-{entityId}" (e.g. "warranties-abc123")
- RowKey: store-assigned record id
- remaining columns: the record fields (parentId, name, depth, ...)
"""

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.data.tables import TableServiceClient, TableClient, UpdateMode
from attachments.core.config import Settings, settings as default_settings
from attachments.core.exceptions import RecordNotFound
from attachments.models.entity import EntityRef
from attachments.models.records import ACTIVITIES, FILES, FOLDERS, MEMBERS
from typing import Any, Callable, Dict, List, Optional
import asyncio
import json
import logging
import uuid

logger = logging.getLogger(__name__)

OnChange = Callable[[List[Dict[str, Any]]], None]


class AzureTableService:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.table_service_client = TableServiceClient.from_connection_string(
            self.settings.AZURE_STORAGE_CONNECTION_STRING
        )
        self.table_names = {
            FOLDERS: self.settings.FOLDERS_TABLE,
            FILES: self.settings.FILES_TABLE,
            MEMBERS: self.settings.MEMBERS_TABLE,
            ACTIVITIES: self.settings.ACTIVITIES_TABLE,
        }
        self.poll_interval = self.settings.SUBSCRIPTION_POLL_INTERVAL_SECONDS

    def _table(self, collection: str) -> TableClient:
        try:
            table_name = self.table_names[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}")
        return self.table_service_client.get_table_client(table_name)

    async def ensure_tables_exist(self):
        """Ensure every collection table exists (non-blocking async)."""
        def _ensure_tables():
            """Sync function to be run in thread pool."""
            for table_name in self.table_names.values():
                try:
                    self.table_service_client.create_table(table_name)
                    logger.info(f"Created table: {table_name}")
                except ResourceExistsError:
                    pass

        await asyncio.to_thread(_ensure_tables)

    @staticmethod
    def _to_row(document: Dict[str, Any]) -> Dict[str, Any]:
        """Table Storage has no nested types; store dicts and lists as JSON strings."""
        return {
            key: json.dumps(value, default=str) if isinstance(value, (dict, list)) else value
            for key, value in document.items()
            if value is not None
        }

    @staticmethod
    def _to_record(entity: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            key: value for key, value in dict(entity).items()
            if key not in ("PartitionKey", "RowKey")
        }
        record["id"] = entity["RowKey"]
        return record

    async def create(self, entity: EntityRef, collection: str, document: Dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        row = {
            **self._to_row(document),
            "PartitionKey": entity.partition_key,
            "RowKey": record_id,
        }
        try:
            await asyncio.to_thread(self._table(collection).create_entity, row)
        except Exception as e:
            logger.error(f"Error creating {collection} record for {entity.partition_key}: {str(e)}")
            raise

        logger.info(f"Created {collection} record {record_id} for {entity.partition_key}")
        return record_id

    async def get(self, entity: EntityRef, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            row = await asyncio.to_thread(
                self._table(collection).get_entity,
                partition_key=entity.partition_key,
                row_key=record_id
            )
        except ResourceNotFoundError:
            return None
        return self._to_record(row)

    async def update(self, entity: EntityRef, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        row = {
            **self._to_row(patch),
            "PartitionKey": entity.partition_key,
            "RowKey": record_id,
        }
        try:
            # MERGE keeps the columns not named in the patch
            await asyncio.to_thread(self._table(collection).update_entity, row, mode=UpdateMode.MERGE)
        except ResourceNotFoundError:
            raise RecordNotFound(collection, record_id)

    async def delete(self, entity: EntityRef, collection: str, record_id: str) -> None:
        """Idempotent: deleting a missing record is not an error."""
        try:
            await asyncio.to_thread(
                self._table(collection).delete_entity,
                partition_key=entity.partition_key,
                row_key=record_id
            )
            logger.info(f"Deleted {collection} record {record_id} for {entity.partition_key}")
        except ResourceNotFoundError:
            logger.debug(f"{collection} record {record_id} already deleted")

    async def query(
        self,
        entity: EntityRef,
        collection: str,
        where: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Equality query within the entity's partition."""
        clauses = ["PartitionKey eq @pk"]
        parameters: Dict[str, Any] = {"pk": entity.partition_key}
        for index, (field, value) in enumerate((where or {}).items()):
            clauses.append(f"{field} eq @p{index}")
            parameters[f"p{index}"] = value

        def _query():
            rows = self._table(collection).query_entities(
                query_filter=" and ".join(clauses),
                parameters=parameters
            )
            return [self._to_record(row) for row in rows]

        return await asyncio.to_thread(_query)

    def subscribe(self, entity: EntityRef, collection: str, on_change: OnChange) -> Callable[[], None]:
        """
        Poll the entity's partition and push the full record set whenever it changes.

        Must be called from a running event loop. The returned callable stops
        polling; forgetting to call it leaks the polling task.
        """
        async def _poll():
            last_fingerprint = None
            while True:
                try:
                    records = await self.query(entity, collection)
                    fingerprint = json.dumps(records, sort_keys=True, default=str)
                    if fingerprint != last_fingerprint:
                        last_fingerprint = fingerprint
                        on_change(records)
                except Exception as e:
                    logger.error(f"Error polling {collection} for {entity.partition_key}: {str(e)}")
                await asyncio.sleep(self.poll_interval)

        task = asyncio.get_running_loop().create_task(_poll())
        logger.info(f"Subscribed to {collection} for {entity.partition_key}")

        def unsubscribe() -> None:
            task.cancel()
            logger.info(f"Unsubscribed from {collection} for {entity.partition_key}")

        return unsubscribe
