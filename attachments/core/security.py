from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from pydantic import BaseModel
from typing import Optional
import logging
import uuid

from attachments.core.config import Settings, settings as default_settings
from attachments.core.exceptions import AuthenticationRequired

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    is_anonymous: bool = False

    @property
    def actor(self) -> dict:
        """Actor payload attached to activity events and notifications."""
        return {
            "id": self.user_id,
            "name": self.name or ("Anonymous" if self.is_anonymous else "Unknown User"),
            "email": self.email or "",
        }


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None, settings: Optional[Settings] = None) -> str:
    settings = settings or default_settings
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Optional[Identity]:
    settings = settings or default_settings
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return Identity(user_id=str(user_id), name=payload.get("name"), email=payload.get("email"))


class IdentityProvider:
    """
    Resolves who is acting on the attachment tree.

    Outside production a caller without a token is given a transient
    anonymous identity, kept for the lifetime of this provider.
    """

    def __init__(self, token: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._token = token
        self._identity: Optional[Identity] = None
        self._resolved = False

    def current_identity(self) -> Optional[Identity]:
        if not self._resolved:
            self._resolved = True
            if self._token:
                self._identity = decode_access_token(self._token, self.settings)
        return self._identity

    async def ensure_signed_in(self) -> Identity:
        identity = self.current_identity()
        if identity is not None:
            return identity

        if not self.settings.allow_anonymous_identity:
            raise AuthenticationRequired()

        self._identity = Identity(user_id=f"anon-{uuid.uuid4().hex}", is_anonymous=True)
        logger.info(f"Signed in anonymously as {self._identity.user_id}")
        return self._identity
