import uuid
from pydantic import BaseModel, Field


class ProvisionRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)


class ProvisionedAccount(BaseModel):
    user_id: uuid.UUID
    workspace_id: uuid.UUID
    username: str
    link_id: uuid.UUID | None = None
    link_slug: str | None = None
    created: bool = True


class UsernameAvailability(BaseModel):
    username: str
    available: bool
