import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserSummary(BaseModel):
    id: uuid.UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class UserPublic(UserSummary):
    email: str | None = None
    avatar_url: str | None = None
    is_virtual: bool = False


class UserResponse(UserPublic):
    created_at: datetime
