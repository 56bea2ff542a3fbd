import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from famsync.config import settings
from famsync.models.invite import InviteStatus
from famsync.schemas.family import FamilySummary
from famsync.schemas.user import UserSummary


class InviteCreateBody(BaseModel):
    receiver_email: EmailStr | None = None
    expires_in: int = Field(
        default=settings.INVITE_DEFAULT_EXPIRY_DAYS,
        ge=1,
        le=settings.INVITE_MAX_EXPIRY_DAYS,
        description="Days until the invite code expires",
    )


class InviteCreate(InviteCreateBody):
    family_id: uuid.UUID


class InviteSummary(BaseModel):
    id: uuid.UUID
    code: str
    model_config = ConfigDict(from_attributes=True)


class InviteResponse(InviteSummary):
    status: InviteStatus
    expires_at: datetime
    created_at: datetime
    responded_at: datetime | None = None
    family: FamilySummary
    sender: UserSummary
    receiver: UserSummary | None = None
