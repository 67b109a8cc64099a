from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """The caller, resolved from the bearer token's `sub` claim."""

    id: UUID
    email: str
    role: str
