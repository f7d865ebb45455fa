import io
import zipfile
import pytest
from attachments.core.exceptions import NotDownloadable, RecordNotFound, TreeCorruptionError
from attachments.models.records import FILES, FOLDERS, ROOT_ID
from tests.helpers import seed_file, seed_folder


def read_zip(content):
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


async def seed_xyz(metadata_store, blob_store, entity):
    """A: x, A/B: y, A/B/C: z, plus an unrelated sibling folder."""
    a = await seed_folder(metadata_store, entity, "A")
    b = await seed_folder(metadata_store, entity, "B", a, 2)
    c = await seed_folder(metadata_store, entity, "C", b, 3)
    other = await seed_folder(metadata_store, entity, "Other")
    await seed_file(metadata_store, blob_store, entity, "x", a, 1, content=b"xx")
    await seed_file(metadata_store, blob_store, entity, "y", b, 2, content=b"yy")
    await seed_file(metadata_store, blob_store, entity, "z", c, 3, content=b"zz")
    await seed_file(metadata_store, blob_store, entity, "unrelated", other, 1)
    return a


@pytest.mark.asyncio
async def test_export_contains_every_descendant_file(service, metadata_store, blob_store, entity):
    a = await seed_xyz(metadata_store, blob_store, entity)

    archive = await service.export_folder(entity, a)

    assert archive.name == "A.zip"
    assert read_zip(archive.content) == {"x": b"xx", "y": b"yy", "z": b"zz"}
    assert sorted(archive.members) == ["x", "y", "z"]
    assert archive.skipped == []


@pytest.mark.asyncio
async def test_export_skips_members_that_cannot_be_fetched(service, metadata_store, blob_store, entity):
    a = await seed_xyz(metadata_store, blob_store, entity)
    await seed_file(metadata_store, blob_store, entity, "lost.pdf", a, 1, content=False)
    await metadata_store.create(entity, FILES, {"name": "no-path.doc", "parentId": a, "size": 1})

    archive = await service.export_folder(entity, a)

    assert sorted(read_zip(archive.content)) == ["x", "y", "z"]
    assert sorted(archive.skipped) == ["lost.pdf", "no-path.doc"]


@pytest.mark.asyncio
async def test_export_is_read_only(service, metadata_store, blob_store, entity):
    a = await seed_xyz(metadata_store, blob_store, entity)
    before = (await metadata_store.query(entity, FOLDERS), await metadata_store.query(entity, FILES))

    await service.export_folder(entity, a)

    assert (await metadata_store.query(entity, FOLDERS), await metadata_store.query(entity, FILES)) == before


@pytest.mark.asyncio
async def test_duplicate_names_keep_last(service, metadata_store, blob_store, entity):
    a = await seed_folder(metadata_store, entity, "A")
    b = await seed_folder(metadata_store, entity, "B", a, 2)
    await seed_file(metadata_store, blob_store, entity, "same.txt", a, 1, content=b"first")
    await seed_file(metadata_store, blob_store, entity, "same.txt", b, 2, content=b"second")

    archive = await service.export_folder(entity, a)

    assert len(read_zip(archive.content)) == 1


@pytest.mark.asyncio
async def test_export_root_and_missing_folder(service, metadata_store, blob_store, entity):
    await seed_file(metadata_store, blob_store, entity, "top.txt")
    archive = await service.export_folder(entity, ROOT_ID)
    assert archive.name == "Root.zip"
    assert list(read_zip(archive.content)) == ["top.txt"]

    with pytest.raises(RecordNotFound):
        await service.export_folder(entity, "missing")


@pytest.mark.asyncio
async def test_export_rejects_cycles(service, metadata_store, entity):
    a = await seed_folder(metadata_store, entity, "A", "placeholder", 1)
    b = await seed_folder(metadata_store, entity, "B", a, 2)
    await metadata_store.update(entity, FOLDERS, a, {"parentId": b})

    with pytest.raises(TreeCorruptionError):
        await service.export_folder(entity, a)


@pytest.mark.asyncio
async def test_download_single_file(service, metadata_store, blob_store, entity):
    file_id = await seed_file(metadata_store, blob_store, entity, "report.pdf", content=b"%PDF")

    downloaded = await service.download_file(entity, file_id)

    assert downloaded.name == "report.pdf"
    assert downloaded.content == b"%PDF"
    assert downloaded.content_type == "application/pdf"


@pytest.mark.asyncio
async def test_download_prefers_cached_url(service, metadata_store, blob_store, entity):
    await blob_store.put("elsewhere/copy.txt", b"cached")
    file_id = await metadata_store.create(entity, FILES, {
        "name": "copy.txt",
        "parentId": ROOT_ID,
        "storagePath": "warranties/w-1/root/copy.txt",
        "downloadURL": "memory://elsewhere/copy.txt",
    })

    downloaded = await service.download_file(entity, file_id)

    assert downloaded.content == b"cached"


@pytest.mark.asyncio
async def test_download_legacy_path(service, metadata_store, blob_store, entity):
    await blob_store.put("warranties/w-1/legacy/old.txt", b"old")
    file_id = await metadata_store.create(entity, FILES, {
        "name": "old.txt",
        "parentId": ROOT_ID,
        "path": "warranties/w-1/legacy/old.txt",
    })

    downloaded = await service.download_file(entity, file_id)

    assert downloaded.content == b"old"


@pytest.mark.asyncio
async def test_not_downloadable(service, metadata_store, entity):
    file_id = await metadata_store.create(entity, FILES, {"name": "broken.doc", "parentId": ROOT_ID})

    with pytest.raises(NotDownloadable):
        await service.download_file(entity, file_id)
    with pytest.raises(RecordNotFound):
        await service.download_file(entity, "missing")


async def seed_stale_url_file(metadata_store, blob_store, entity, parent_id, depth):
    """A file whose blob is live but whose cached download URL no longer resolves."""
    file_id = await seed_file(metadata_store, blob_store, entity, "x.pdf", parent_id, depth, content=b"%PDF-1.4")
    await metadata_store.update(entity, FILES, file_id, {"downloadURL": "memory://expired-sas/x.pdf"})
    return file_id


@pytest.mark.asyncio
async def test_export_reads_members_from_storage_path(service, metadata_store, blob_store, entity):
    a = await seed_folder(metadata_store, entity, "A")
    await seed_stale_url_file(metadata_store, blob_store, entity, a, 1)

    archive = await service.export_folder(entity, a)

    assert archive.members == ["x.pdf"]
    assert archive.skipped == []
    assert read_zip(archive.content) == {"x.pdf": b"%PDF-1.4"}


@pytest.mark.asyncio
async def test_export_uses_cached_url_without_storage_path(service, metadata_store, blob_store, entity):
    a = await seed_folder(metadata_store, entity, "A")
    await blob_store.put("elsewhere/copy.txt", b"cached")
    await metadata_store.create(entity, FILES, {
        "name": "copy.txt",
        "parentId": a,
        "downloadURL": "memory://elsewhere/copy.txt",
    })

    archive = await service.export_folder(entity, a)

    assert read_zip(archive.content) == {"copy.txt": b"cached"}


@pytest.mark.asyncio
async def test_download_falls_back_when_cached_url_fails(service, metadata_store, blob_store, entity):
    file_id = await seed_stale_url_file(metadata_store, blob_store, entity, ROOT_ID, 0)

    downloaded = await service.download_file(entity, file_id)

    assert downloaded.content == b"%PDF-1.4"
