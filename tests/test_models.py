import pytest
from pydantic import ValidationError
from attachments.models.entity import EntityRef, EntityType, build_storage_path
from attachments.models.records import (
    ROOT,
    ROOT_ID,
    FileRecord,
    FolderLocation,
    FolderRecord,
    file_type_of,
)


def test_entity_collections():
    assert EntityType.LEAD.collection == "leads"
    assert EntityType.CLIENT.collection == "clients"
    assert EntityType.PROJECT.collection == "projects"
    # Irregular plural
    assert EntityType.WARRANTY.collection == "warranties"


def test_storage_path_convention():
    entity = EntityRef(entity_type=EntityType.WARRANTY, entity_id="w-42")
    assert build_storage_path(entity, "folder-1", "report.pdf") == "warranties/w-42/folder-1/report.pdf"
    assert build_storage_path(entity, ROOT_ID, "a.txt") == "warranties/w-42/root/a.txt"


def test_partition_key_has_no_slash():
    entity = EntityRef(entity_type="project", entity_id="p1")
    assert entity.partition_key == "projects-p1"


def test_entity_id_required():
    with pytest.raises(ValidationError):
        EntityRef(entity_type=EntityType.LEAD, entity_id="")


def test_file_type_of():
    assert file_type_of("Report.PDF") == "pdf"
    assert file_type_of("archive.tar.gz") == "gz"
    assert file_type_of("README") == ""


def test_root_is_a_distinct_variant():
    assert ROOT.id == ROOT_ID
    assert ROOT.depth == 0
    with pytest.raises(ValidationError):
        FolderLocation(id=ROOT_ID, name="Root", depth=1)
    with pytest.raises(ValidationError):
        FolderLocation(id="f1", name="Docs", depth=0)


def test_folder_record_document_round_trip_uses_store_field_names():
    record = FolderRecord.from_document({"id": "f1", "name": "Docs", "parentId": "root", "depth": 1})
    document = record.to_document()
    assert document == {"name": "Docs", "parentId": "root", "depth": 1, "size": 0}
    assert record.location == FolderLocation(id="f1", name="Docs", depth=1, parent_id="root")


def test_file_record_accepts_legacy_path():
    record = FileRecord.from_document({"id": "x", "name": "old.doc", "path": "leads/l1/root/old.doc"})
    assert record.storage_path is None
    assert record.blob_path == "leads/l1/root/old.doc"
