from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Entity Attachments API"
    ENVIRONMENT: str = "development"
    API_V1_PREFIX: str = "/api/v1"

    # Storage backend: "memory" keeps everything in-process, "azure" uses
    # Azure Table Storage for metadata and Azure Blob Storage for content
    STORAGE_BACKEND: str = "memory"

    # JWT
    SECRET_KEY: str = "change-this-secret-key"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Azure Blob Storage
    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = None
    AZURE_STORAGE_ACCOUNT_NAME: Optional[str] = None
    AZURE_STORAGE_ACCOUNT_KEY: Optional[str] = None
    ATTACHMENTS_CONTAINER: str = "attachments"
    DOWNLOAD_URL_EXPIRY_HOURS: int = 24

    # Azure Table Storage
    FOLDERS_TABLE: str = "attachmentfolders"
    FILES_TABLE: str = "attachmentfiles"
    MEMBERS_TABLE: str = "entitymembers"
    ACTIVITIES_TABLE: str = "entityactivities"
    SUBSCRIPTION_POLL_INTERVAL_SECONDS: float = 2.0

    # Azure Service Bus
    SERVICE_BUS_CONNECTION_STRING: Optional[str] = None
    NOTIFICATIONS_QUEUE_NAME: str = "attachment-notifications"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # File Upload
    MAX_UPLOAD_SIZE_MB: int = 50
    UPLOAD_CHUNK_SIZE_MB: int = 4
    # Finished upload batches kept for status polling
    UPLOAD_STATUS_RETENTION: int = 1000

    # Upper bound on folders + files visited by recursive delete / archive export
    MAX_TRAVERSAL_NODES: int = 10000

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def upload_chunk_size_bytes(self) -> int:
        return self.UPLOAD_CHUNK_SIZE_MB * 1024 * 1024

    @property
    def allow_anonymous_identity(self) -> bool:
        return self.ENVIRONMENT != "production"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
