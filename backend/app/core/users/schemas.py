import uuid
from datetime import datetime
from pydantic import BaseModel


class UserRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    email: str
    username: str
    first_name: str | None
    last_name: str | None
    avatar_url: str | None
    storage_used: int
    is_active: bool
    created_at: datetime
