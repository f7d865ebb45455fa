import pytest
from attachments.core.config import Settings
from attachments.core.security import IdentityProvider
from attachments.models.entity import EntityRef, EntityType
from attachments.services.attachment_service import AttachmentService
from attachments.services.memory_store import InMemoryBlobStore, InMemoryMetadataStore, InMemoryNotifier


@pytest.fixture
def test_settings():
    return Settings(
        ENVIRONMENT="test",
        STORAGE_BACKEND="memory",
        SECRET_KEY="test-secret-key",
        MAX_UPLOAD_SIZE_MB=50,
    )


@pytest.fixture
def entity():
    return EntityRef(entity_type=EntityType.WARRANTY, entity_id="w-1")


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()


@pytest.fixture
def blob_store():
    # Small chunks so a few KB already takes several staged blocks
    return InMemoryBlobStore(chunk_size=1024)


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def service(metadata_store, blob_store, notifier, test_settings):
    return AttachmentService(
        metadata_store=metadata_store,
        blob_store=blob_store,
        notifier=notifier,
        fetcher=blob_store,
        settings=test_settings,
    )


@pytest.fixture
def identity_provider(test_settings):
    """No token outside production: signs in anonymously."""
    return IdentityProvider(settings=test_settings)
