import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from attachments.core.config import Settings
from attachments.core.exceptions import BlobNotFound, NotificationDeliveryFailure, RecordNotFound
from attachments.models.records import FOLDERS
from attachments.services.attachment_service import create_attachment_service
from attachments.services.azure_blob import AzureBlobService
from attachments.services.azure_table_service import AzureTableService
from attachments.services.memory_store import InMemoryMetadataStore, InMemoryNotifier
from attachments.services.outbox import build_notification_event
from attachments.services.service_bus_service import ServiceBusNotifier


@pytest.fixture
def azure_settings():
    return Settings(
        ENVIRONMENT="test",
        STORAGE_BACKEND="azure",
        AZURE_STORAGE_CONNECTION_STRING="UseDevelopmentStorage=true",
        SERVICE_BUS_CONNECTION_STRING="Endpoint=sb://example.servicebus.windows.net/",
    )


@pytest.fixture
def table_mocks(azure_settings):
    with patch("attachments.services.azure_table_service.TableServiceClient") as client_cls:
        service_client = client_cls.from_connection_string.return_value
        yield AzureTableService(azure_settings), service_client, service_client.get_table_client.return_value


@pytest.fixture
def blob_mocks(azure_settings):
    with patch("attachments.services.azure_blob.BlobServiceClient") as client_cls:
        service_client = client_cls.from_connection_string.return_value
        yield AzureBlobService(azure_settings), service_client, service_client.get_blob_client.return_value


# --- Table Storage ---

@pytest.mark.asyncio
async def test_table_create_partitions_by_entity(table_mocks, entity):
    service, service_client, table = table_mocks

    record_id = await service.create(entity, FOLDERS, {
        "name": "Docs",
        "parentId": "root",
        "actor": {"name": "Ana"},
        "updatedAt": None,
    })

    service_client.get_table_client.assert_called_with("attachmentfolders")
    row = table.create_entity.call_args.args[0]
    assert row["PartitionKey"] == "warranties-w-1"
    assert row["RowKey"] == record_id
    assert json.loads(row["actor"]) == {"name": "Ana"}
    assert "updatedAt" not in row


@pytest.mark.asyncio
async def test_table_query_filters_within_partition(table_mocks, entity):
    service, _, table = table_mocks
    table.query_entities.return_value = [
        {"PartitionKey": "warranties-w-1", "RowKey": "f1", "name": "Docs", "parentId": "root"},
    ]

    records = await service.query(entity, FOLDERS, {"parentId": "root"})

    assert records == [{"name": "Docs", "parentId": "root", "id": "f1"}]
    kwargs = table.query_entities.call_args.kwargs
    assert kwargs["query_filter"] == "PartitionKey eq @pk and parentId eq @p0"
    assert kwargs["parameters"] == {"pk": "warranties-w-1", "p0": "root"}


@pytest.mark.asyncio
async def test_table_get_update_delete_missing(table_mocks, entity):
    service, _, table = table_mocks
    table.get_entity.side_effect = ResourceNotFoundError("missing")
    table.update_entity.side_effect = ResourceNotFoundError("missing")
    table.delete_entity.side_effect = ResourceNotFoundError("missing")

    assert await service.get(entity, FOLDERS, "f1") is None
    with pytest.raises(RecordNotFound):
        await service.update(entity, FOLDERS, "f1", {"name": "New"})
    # Idempotent delete
    await service.delete(entity, FOLDERS, "f1")


@pytest.mark.asyncio
async def test_ensure_tables_ignores_existing(table_mocks):
    service, service_client, _ = table_mocks
    service_client.create_table.side_effect = ResourceExistsError("exists")

    await service.ensure_tables_exist()

    assert service_client.create_table.call_count == 4


def test_unknown_collection(table_mocks):
    service, _, _ = table_mocks
    with pytest.raises(ValueError):
        service._table("invoices")


# --- Blob Storage ---

@pytest.mark.asyncio
async def test_resumable_put_stages_blocks_then_commits(blob_mocks):
    service, _, blob_client = blob_mocks
    service.chunk_size = 1024

    transfer = service.put_resumable("warranties/w-1/root/a.pdf", bytes(2500), "application/pdf")
    await transfer.wait()

    assert blob_client.stage_block.call_count == 3
    blocks = blob_client.commit_block_list.call_args.args[0]
    assert len(blocks) == 3
    assert blob_client.commit_block_list.call_args.kwargs["content_settings"].content_type == "application/pdf"


@pytest.mark.asyncio
async def test_url_for(blob_mocks, azure_settings):
    service, _, blob_client = blob_mocks
    blob_client.exists.return_value = True
    blob_client.url = "https://acct.blob.core.windows.net/attachments/a.txt"

    assert await service.url_for("a.txt") == "https://acct.blob.core.windows.net/attachments/a.txt"

    service.settings = azure_settings.model_copy(update={"AZURE_STORAGE_ACCOUNT_KEY": "a2V5"})
    with patch("attachments.services.azure_blob.generate_blob_sas", return_value="sig=abc") as sas:
        assert await service.url_for("a.txt") == "https://acct.blob.core.windows.net/attachments/a.txt?sig=abc"
    assert sas.call_args.kwargs["blob_name"] == "a.txt"

    blob_client.exists.return_value = False
    with pytest.raises(BlobNotFound):
        await service.url_for("a.txt")


@pytest.mark.asyncio
async def test_blob_get_and_delete_missing(blob_mocks):
    service, _, blob_client = blob_mocks
    blob_client.download_blob.side_effect = ResourceNotFoundError("gone")
    blob_client.delete_blob.side_effect = ResourceNotFoundError("gone")

    with pytest.raises(BlobNotFound):
        await service.get("a.txt")
    await service.delete("a.txt")


# --- Service Bus ---

def service_bus_mocks(client_cls):
    client = MagicMock()
    sender = MagicMock()
    sender.send_messages = AsyncMock()
    client.get_queue_sender.return_value = sender
    client_cls.from_connection_string.return_value.__aenter__.return_value = client
    return client, sender


@pytest.mark.asyncio
async def test_service_bus_publishes_json_event(azure_settings, entity):
    event = build_notification_event("attachment_added", ["user-1"], entity, "a.pdf")
    with patch("attachments.services.service_bus_service.ServiceBusClient") as client_cls:
        client, sender = service_bus_mocks(client_cls)
        await ServiceBusNotifier(azure_settings).publish(event)

    client.get_queue_sender.assert_called_with("attachment-notifications")
    message = sender.send_messages.call_args.args[0]
    assert message.message_id.startswith("attachment_added-")


@pytest.mark.asyncio
async def test_service_bus_failure_is_wrapped(azure_settings, entity):
    event = build_notification_event("attachment_deleted", ["user-1"], entity, "a.pdf")
    with patch("attachments.services.service_bus_service.ServiceBusClient") as client_cls:
        _, sender = service_bus_mocks(client_cls)
        sender.send_messages.side_effect = ConnectionError("amqp link detached")
        with pytest.raises(NotificationDeliveryFailure):
            await ServiceBusNotifier(azure_settings).publish(event)


# --- Backend selection ---

def test_azure_backend_wiring(azure_settings):
    with patch("attachments.services.azure_table_service.TableServiceClient"), \
            patch("attachments.services.azure_blob.BlobServiceClient"):
        service = create_attachment_service(azure_settings)

    assert isinstance(service.metadata_store, AzureTableService)
    assert isinstance(service.blob_store, AzureBlobService)
    assert isinstance(service.notifier, ServiceBusNotifier)


def test_memory_backend_wiring(test_settings):
    service = create_attachment_service(test_settings)
    assert isinstance(service.metadata_store, InMemoryMetadataStore)
    assert isinstance(service.notifier, InMemoryNotifier)
    assert service.archive.fetcher is service.blob_store


def test_unknown_backend(test_settings):
    with pytest.raises(ValueError):
        create_attachment_service(test_settings.model_copy(update={"STORAGE_BACKEND": "s3"}))
