from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from attachments.core.dependencies import get_attachment_service
from attachments.models.entity import EntityRef, EntityType
from attachments.schemas.file import FileResponse
from attachments.schemas.folder import FolderResponse, TreeSnapshot
from attachments.services.attachment_service import AttachmentService
from attachments.services.tree import NamespaceTree
import asyncio
import logging

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stream"])


def to_snapshot(tree: NamespaceTree) -> dict:
    snapshot = TreeSnapshot(
        folders=[FolderResponse.model_validate(folder) for folder in tree.folders],
        files=[FileResponse.model_validate(file) for file in tree.files],
    )
    return snapshot.model_dump(mode="json")


@router.websocket("/ws/entities/{entity_type}/{entity_id}/attachments")
async def attachments_stream(
    websocket: WebSocket,
    entity_type: EntityType,
    entity_id: str,
    service: AttachmentService = Depends(get_attachment_service)
):
    """Push the entity's folder/file collections now and after every change."""
    entity = EntityRef(entity_type=entity_type, entity_id=entity_id)
    await websocket.accept()
    logger.info(f"WebSocket connected for {entity.partition_key}")

    snapshots = service.watch(entity)

    async def forward():
        async for tree in snapshots:
            await websocket.send_json(to_snapshot(tree))

    forward_task = asyncio.create_task(forward())
    try:
        # Keep the connection open until the client goes away
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for {entity.partition_key}")
    finally:
        forward_task.cancel()
        await asyncio.gather(forward_task, return_exceptions=True)
        await snapshots.aclose()
