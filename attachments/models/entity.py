from pydantic import BaseModel, Field
import enum


class EntityType(str, enum.Enum):
    LEAD = "lead"
    CLIENT = "client"
    PROJECT = "project"
    WARRANTY = "warranty"

    @property
    def collection(self) -> str:
        """Plural collection name used in storage paths ("warranty" -> "warranties")."""
        if self is EntityType.WARRANTY:
            return "warranties"
        return f"{self.value}s"


class EntityRef(BaseModel):
    """The business object an attachment tree is scoped under."""

    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)

    class Config:
        frozen = True

    @property
    def collection(self) -> str:
        return self.entity_type.collection

    @property
    def partition_key(self) -> str:
        # Table Storage keys may not contain "/"
        return f"{self.collection}-{self.entity_id}"


def build_storage_path(entity: EntityRef, folder_id: str, file_name: str) -> str:
    """Blob key for an uploaded file: {collection}/{entityId}/{folderId}/{fileName}."""
    return f"{entity.collection}/{entity.entity_id}/{folder_id}/{file_name}"
