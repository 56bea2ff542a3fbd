"""Families router.

Endpoints for families, members, invites and join requests. Handlers only
unpack the request; authorization and state changes live in FamilyService.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from famsync.core.dependencies import get_current_user, get_family_service
from famsync.core.rate_limit import INVITE_REDEMPTION_LIMIT, limiter
from famsync.models.user import User
from famsync.schemas.common import ApiResponse
from famsync.schemas.family import (
    FamilyCreate,
    FamilyMemberResponse,
    FamilyResponse,
    FamilyStatsResponse,
    FamilyUpdate,
    MemberRoleBody,
    MemberRoleUpdate,
    VirtualMemberCreate,
    VirtualMemberUpdate,
)
from famsync.schemas.invite import InviteCreate, InviteCreateBody, InviteResponse
from famsync.schemas.join_request import JoinFamilyRequest, JoinRequestResponse, RespondToJoinRequest
from famsync.services.family_service import FamilyService

router = APIRouter(prefix="/families", tags=["Families"])

Service = Annotated[FamilyService, Depends(get_family_service)]
CurrentUser = Annotated[User, Depends(get_current_user)]


# -- Collection and join-request routes (static paths before /{family_id}) ---

@router.post(
    "",
    response_model=ApiResponse[FamilyResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_family(body: FamilyCreate, service: Service, current_user: CurrentUser):
    """Create a family. The caller becomes its creator and first admin."""
    family = await service.create_family(current_user.id, body)
    return ApiResponse(message="Family created successfully", data=family)


@router.get("", response_model=ApiResponse[list[FamilyResponse]])
async def list_my_families(service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_user_families(current_user.id))


@router.get("/my-join-requests", response_model=ApiResponse[list[JoinRequestResponse]])
async def list_my_join_requests(service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_user_join_requests(current_user.id))


@router.post(
    "/join",
    response_model=ApiResponse[JoinRequestResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(INVITE_REDEMPTION_LIMIT)
async def join_family(
    request: Request,
    body: JoinFamilyRequest,
    service: Service,
    current_user: CurrentUser,
):
    """Redeem an invite code. Creates a join request awaiting admin review."""
    join_request = await service.request_to_join_family(current_user.id, body)
    return ApiResponse(message="Join request sent successfully", data=join_request)


@router.post(
    "/join-requests/{request_id}/respond",
    response_model=ApiResponse[JoinRequestResponse],
)
async def respond_to_join_request(
    request_id: uuid.UUID,
    body: RespondToJoinRequest,
    service: Service,
    current_user: CurrentUser,
):
    """Approve or reject a pending join request. Admin only."""
    join_request = await service.respond_to_join_request(current_user.id, request_id, body)
    return ApiResponse(
        message=f"Join request {body.response.lower()} successfully",
        data=join_request,
    )


@router.delete("/join-requests/{request_id}", response_model=ApiResponse)
async def cancel_join_request(request_id: uuid.UUID, service: Service, current_user: CurrentUser):
    await service.cancel_join_request(current_user.id, request_id)
    return ApiResponse(message="Join request cancelled successfully")


# -- Single family ----------------------------------------------------------

@router.get("/{family_id}", response_model=ApiResponse[FamilyResponse])
async def get_family(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    """Get family details. Requires the caller to be a family member."""
    return ApiResponse(data=await service.get_family_by_id(family_id, current_user.id))


@router.put("/{family_id}", response_model=ApiResponse[FamilyResponse])
async def update_family(
    family_id: uuid.UUID,
    body: FamilyUpdate,
    service: Service,
    current_user: CurrentUser,
):
    """Update family details. Admin only."""
    family = await service.update_family(family_id, current_user.id, body)
    return ApiResponse(message="Family updated successfully", data=family)


@router.delete("/{family_id}", response_model=ApiResponse)
async def delete_family(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    """Delete the family with all members, invites and join requests. Creator only."""
    await service.delete_family(family_id, current_user.id)
    return ApiResponse(message="Family deleted successfully")


@router.get("/{family_id}/stats", response_model=ApiResponse[FamilyStatsResponse])
async def get_family_stats(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_family_stats(family_id, current_user.id))


# -- Members ------------------------------------------------------------------

@router.get("/{family_id}/members", response_model=ApiResponse[list[FamilyMemberResponse]])
async def list_members(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_family_members(family_id, current_user.id))


@router.put(
    "/{family_id}/members/{member_id}/role",
    response_model=ApiResponse[FamilyMemberResponse],
)
async def update_member_role(
    family_id: uuid.UUID,
    member_id: uuid.UUID,
    body: MemberRoleBody,
    service: Service,
    current_user: CurrentUser,
):
    member = await service.update_member_role(
        family_id, current_user.id, MemberRoleUpdate(member_id=member_id, role=body.role),
    )
    return ApiResponse(message="Member role updated successfully", data=member)


@router.delete("/{family_id}/members/{member_id}", response_model=ApiResponse)
async def remove_member(
    family_id: uuid.UUID,
    member_id: uuid.UUID,
    service: Service,
    current_user: CurrentUser,
):
    await service.remove_member(family_id, current_user.id, member_id)
    return ApiResponse(message="Member removed successfully")


@router.post("/{family_id}/leave", response_model=ApiResponse)
async def leave_family(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    await service.leave_family(family_id, current_user.id)
    return ApiResponse(message="Left family successfully")


@router.post(
    "/{family_id}/virtual-members",
    response_model=ApiResponse[FamilyMemberResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_virtual_member(
    family_id: uuid.UUID,
    body: VirtualMemberCreate,
    service: Service,
    current_user: CurrentUser,
):
    """Add a member without a login (e.g. a young child). Admin only."""
    member = await service.create_virtual_member(family_id, current_user.id, body)
    return ApiResponse(message="Virtual member created successfully", data=member)


@router.put(
    "/{family_id}/virtual-members/{user_id}",
    response_model=ApiResponse[FamilyMemberResponse],
)
async def update_virtual_member(
    family_id: uuid.UUID,
    user_id: uuid.UUID,
    body: VirtualMemberUpdate,
    service: Service,
    current_user: CurrentUser,
):
    member = await service.update_virtual_member(family_id, current_user.id, user_id, body)
    return ApiResponse(message="Virtual member updated successfully", data=member)


# -- Invites and join requests ----------------------------------------------

@router.post(
    "/{family_id}/invites",
    response_model=ApiResponse[InviteResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invite(
    family_id: uuid.UUID,
    body: InviteCreateBody,
    service: Service,
    current_user: CurrentUser,
):
    """Issue a new invite code. Any older redeemable code of the family expires."""
    invite = await service.create_invite(
        current_user.id, InviteCreate(family_id=family_id, **body.model_dump()),
    )
    return ApiResponse(message="Invite created successfully", data=invite)


@router.get("/{family_id}/invites", response_model=ApiResponse[list[InviteResponse]])
async def list_invites(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_family_invites(family_id, current_user.id))


@router.get("/{family_id}/join-requests", response_model=ApiResponse[list[JoinRequestResponse]])
async def list_join_requests(family_id: uuid.UUID, service: Service, current_user: CurrentUser):
    return ApiResponse(data=await service.get_family_join_requests(family_id, current_user.id))
