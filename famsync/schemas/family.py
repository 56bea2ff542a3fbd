import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from famsync.models.family import FamilyRole
from famsync.schemas.user import UserPublic, UserSummary


class FamilyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    avatar_url: str | None = Field(default=None, max_length=2048)


class FamilyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    avatar_url: str | None = Field(default=None, max_length=2048)


class FamilySummary(BaseModel):
    id: uuid.UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class FamilyResponse(FamilySummary):
    description: str | None = None
    avatar_url: str | None = None
    created_at: datetime
    updated_at: datetime
    creator: UserSummary
    member_count: int
    user_role: FamilyRole | None = None


class FamilyMemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    family_id: uuid.UUID
    role: FamilyRole
    joined_at: datetime
    user: UserPublic
    model_config = ConfigDict(from_attributes=True)


class MemberRoleBody(BaseModel):
    role: FamilyRole


class MemberRoleUpdate(MemberRoleBody):
    member_id: uuid.UUID


class VirtualMemberCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=2048)


class VirtualMemberUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=2048)


class FamilyStatsResponse(BaseModel):
    total_members: int
    total_admins: int
    pending_invites: int
    pending_join_requests: int
    created_at: datetime
