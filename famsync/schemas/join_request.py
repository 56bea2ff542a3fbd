import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from famsync.models.join_request import JoinRequestStatus
from famsync.schemas.family import FamilySummary
from famsync.schemas.invite import InviteSummary
from famsync.schemas.user import UserPublic, UserSummary


class JoinFamilyRequest(BaseModel):
    code: str = Field(min_length=6, max_length=20)
    message: str | None = Field(default=None, max_length=500)


class RespondToJoinRequest(BaseModel):
    response: Literal["APPROVED", "REJECTED"]


class JoinRequestResponse(BaseModel):
    id: uuid.UUID
    status: JoinRequestStatus
    message: str | None = None
    created_at: datetime
    updated_at: datetime
    responded_at: datetime | None = None
    user: UserPublic
    family: FamilySummary
    invite: InviteSummary
    reviewer: UserSummary | None = None
    model_config = ConfigDict(from_attributes=True)
