"""
Live view of an entity's attachment tree.

The metadata store pushes flat folder and file collections; this module
turns those pushes into a stream of rebuilt NamespaceTree snapshots.
"""

from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
import logging

from attachments.models.entity import EntityRef
from attachments.models.records import FILES, FOLDERS
from attachments.services.tree import DEFAULT_MAX_NODES, NamespaceTree

logger = logging.getLogger(__name__)


async def watch_tree(
    metadata_store,
    entity: EntityRef,
    max_nodes: int = DEFAULT_MAX_NODES
) -> AsyncIterator[NamespaceTree]:
    """
    Yield a NamespaceTree once both collections are known and again after every change.

    Pushes that arrive while the consumer is busy are coalesced into the
    next snapshot. Closing the generator tears both store subscriptions down.
    """
    latest: Dict[str, Optional[List[Dict[str, Any]]]] = {FOLDERS: None, FILES: None}
    changed = asyncio.Event()

    def listener(collection: str):
        def on_change(records: List[Dict[str, Any]]) -> None:
            latest[collection] = records
            changed.set()
        return on_change

    unsubscribe_folders = metadata_store.subscribe(entity, FOLDERS, listener(FOLDERS))
    unsubscribe_files = metadata_store.subscribe(entity, FILES, listener(FILES))
    logger.info(f"Watching attachment tree for {entity.partition_key}")
    try:
        while True:
            await changed.wait()
            changed.clear()
            if latest[FOLDERS] is None or latest[FILES] is None:
                continue
            yield NamespaceTree.from_documents(latest[FOLDERS], latest[FILES], max_nodes=max_nodes)
    finally:
        unsubscribe_folders()
        unsubscribe_files()
        logger.info(f"Stopped watching attachment tree for {entity.partition_key}")
