"""Seeding helpers that write records straight into the in-memory stores."""

from attachments.models.entity import build_storage_path
from attachments.models.records import FILES, FOLDERS, MEMBERS, file_type_of


async def seed_folder(metadata_store, entity, name, parent_id="root", depth=1):
    return await metadata_store.create(entity, FOLDERS, {
        "name": name,
        "parentId": parent_id,
        "depth": depth,
        "size": 0,
    })


async def seed_file(metadata_store, blob_store, entity, name, parent_id="root", depth=0, content=None):
    """File record plus its blob. Pass content=False to leave the blob missing."""
    path = build_storage_path(entity, parent_id, name)
    if content is not False:
        await blob_store.put(path, content if content is not None else name.encode("utf-8"))
    return await metadata_store.create(entity, FILES, {
        "name": name,
        "size": 0 if content is False else len(content or name.encode("utf-8")),
        "type": file_type_of(name),
        "parentId": parent_id,
        "storagePath": path,
        "depth": depth,
    })


async def seed_member(metadata_store, entity, user_id="user-1"):
    return await metadata_store.create(entity, MEMBERS, {"userId": user_id})
