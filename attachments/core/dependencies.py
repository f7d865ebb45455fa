from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from functools import lru_cache
from typing import Optional
from attachments.core.config import Settings, settings
from attachments.core.exceptions import AuthenticationRequired
from attachments.core.security import Identity, IdentityProvider
from attachments.models.entity import EntityRef, EntityType
from attachments.services.attachment_service import AttachmentService, create_attachment_service

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings() -> Settings:
    return settings


@lru_cache
def get_attachment_service() -> AttachmentService:
    """One service (and one upload tracker) per process."""
    return create_attachment_service(settings)


def get_entity(entity_type: EntityType, entity_id: str) -> EntityRef:
    """Owning entity taken from the ``/entities/{entity_type}/{entity_id}`` path."""
    return EntityRef(entity_type=entity_type, entity_id=entity_id)


def get_identity_provider(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    app_settings: Settings = Depends(get_settings)
) -> IdentityProvider:
    token = credentials.credentials if credentials else None
    provider = IdentityProvider(token=token, settings=app_settings)

    # A token that was sent but does not decode is rejected, not downgraded to anonymous
    if token and provider.current_identity() is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return provider


async def get_current_identity(
    provider: IdentityProvider = Depends(get_identity_provider)
) -> Identity:
    """Get the acting identity, signing in anonymously outside production."""
    try:
        return await provider.ensure_signed_in()
    except AuthenticationRequired as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
