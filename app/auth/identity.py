"""Identity provisioner client: create and delete external authentication identities."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import ConfigurationError, IdentityError

logger = logging.getLogger(__name__)

ADMIN_USERS_PATH = "/auth/v1/admin/users"


class Identity(BaseModel):
    id: UUID
    email: str


class IdentityProvider(ABC):
    """
    Narrow interface the registration saga depends on.

    create_identity raises IdentityError (conflict=True when the provider reports the email as
    already registered). delete_identity is only used for compensation.
    """

    @abstractmethod
    async def create_identity(self, email: str, password: str, metadata: Dict[str, Any]) -> Identity:
        ...

    @abstractmethod
    async def delete_identity(self, identity_id: UUID) -> None:
        ...


class HttpIdentityProvider(IdentityProvider):
    """GoTrue-compatible admin API. One request per call: no retries, timeout only if configured."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "apikey": self.service_key,
                "Authorization": f"Bearer {self.service_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self.transport,
        )

    async def create_identity(self, email: str, password: str, metadata: Dict[str, Any]) -> Identity:
        payload = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": metadata,
        }
        try:
            async with self._client() as client:
                response = await client.post(ADMIN_USERS_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable: %s", e)
            raise IdentityError(f"Identity provider unreachable: {e}") from e

        if response.status_code in (200, 201):
            data = response.json()
            user = data.get("user", data)
            if not user or not user.get("id"):
                raise IdentityError("Failed to create user: no user data returned")
            return Identity(id=UUID(str(user["id"])), email=user.get("email", email))

        message = _error_message(response)
        if response.status_code == 422 or "already registered" in message.lower():
            raise IdentityError(
                "Email is already registered.",
                conflict=True,
                field_errors={"email": ["Email is already registered"]},
            )
        logger.error("Identity creation rejected (%s): %s", response.status_code, message)
        raise IdentityError(f"Failed to create user account: {message}")

    async def delete_identity(self, identity_id: UUID) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(f"{ADMIN_USERS_PATH}/{identity_id}")
        except httpx.HTTPError as e:
            raise IdentityError(f"Identity provider unreachable: {e}") from e
        if response.status_code not in (200, 204, 404):
            raise IdentityError(f"Failed to delete identity {identity_id}: {_error_message(response)}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("msg") or body.get("message") or body.get("error_description") or body.get("error") or body)
    return str(body)


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency. Raises ConfigurationError when provisioner credentials are missing."""
    if not settings.identity_service_url or not settings.identity_service_key:
        logger.error("Missing IDENTITY_SERVICE_URL or IDENTITY_SERVICE_KEY")
        raise ConfigurationError("Server configuration error. Please contact support.")
    return HttpIdentityProvider(
        settings.identity_service_url,
        settings.identity_service_key,
        timeout=settings.identity_timeout_seconds,
    )
