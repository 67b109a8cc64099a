import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.identity import IdentityProvider, get_identity_provider
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.core.models import Profile
from app.db.session import get_db

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated profile from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    sub = payload.get("sub")
    if not sub:
        raise credentials_exception
    try:
        user_id = UUID(sub)
    except ValueError:
        raise credentials_exception

    profile = await db.get(Profile, user_id)
    if not profile:
        raise credentials_exception

    return CurrentUser(id=profile.id, email=profile.email, role=profile.role)


def optional_identity_provider() -> Optional[IdentityProvider]:
    """
    Provider for bulk endpoints: None when credentials are missing, so the batch can answer
    with a failed summary instead of an HTTP error.
    """
    try:
        return get_identity_provider()
    except ConfigurationError:
        return None
