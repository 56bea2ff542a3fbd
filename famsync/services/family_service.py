"""Family Service.

Family lifecycle, membership, invites and the join-request workflow.
Every operation takes the acting user's id and enforces membership or
admin role before touching state. Mutations commit before any realtime
event is emitted, so notification failures never undo a state change.
"""

import logging
import uuid
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from famsync.core.exceptions import (
    AlreadyFamilyMember,
    CannotLeaveAsCreator,
    CannotRemoveCreator,
    FamilyNotFound,
    InviteAlreadyUsed,
    InviteExpired,
    InviteNotFound,
    JoinRequestAlreadyProcessed,
    NotFamilyAdmin,
    NotFamilyMember,
    PermissionDenied,
    ResourceAlreadyExists,
    ResourceNotFound,
    ValidationError,
)
from famsync.database import as_utc, utcnow
from famsync.models.family import Family, FamilyMember, FamilyRole
from famsync.models.invite import FamilyInvite, InviteStatus
from famsync.models.join_request import FamilyJoinRequest, JoinRequestStatus
from famsync.models.user import User
from famsync.schemas.family import (
    FamilyCreate,
    FamilyMemberResponse,
    FamilyResponse,
    FamilyStatsResponse,
    FamilyUpdate,
    MemberRoleUpdate,
    VirtualMemberCreate,
    VirtualMemberUpdate,
)
from famsync.schemas.invite import InviteCreate, InviteResponse
from famsync.schemas.join_request import JoinFamilyRequest, JoinRequestResponse, RespondToJoinRequest
from famsync.schemas.user import UserSummary
from famsync.services.invite_codes import generate_invite_code
from famsync.services.notifier import RealtimeNotifier

logger = logging.getLogger(__name__)

DUPLICATE_REQUEST_MESSAGE = "You already have a pending join request for this family"


def _clean_optional(value: str | None) -> str | None:
    """Blank optional text is stored as NULL."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _clean_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValidationError("Name cannot be empty")
    return name


class FamilyService:
    def __init__(self, db: AsyncSession, notifier: RealtimeNotifier) -> None:
        self.db = db
        self.notifier = notifier

    # -- Lookups and guards ---------------------------------------------------

    async def _get_membership(self, family_id: uuid.UUID, user_id: uuid.UUID) -> FamilyMember | None:
        result = await self.db.execute(
            select(FamilyMember)
            .where(FamilyMember.family_id == family_id, FamilyMember.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_member(self, family_id: uuid.UUID, user_id: uuid.UUID) -> FamilyMember:
        membership = await self._get_membership(family_id, user_id)
        if membership is None:
            raise NotFamilyMember()
        return membership

    async def _require_admin(self, family_id: uuid.UUID, user_id: uuid.UUID) -> FamilyMember:
        membership = await self._get_membership(family_id, user_id)
        if membership is None or membership.role != FamilyRole.ADMIN.value:
            raise NotFamilyAdmin()
        return membership

    async def _load_family(self, family_id: uuid.UUID) -> Family | None:
        result = await self.db.execute(
            select(Family)
            .options(selectinload(Family.creator))
            .where(Family.id == family_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_member(self, member_id: uuid.UUID, family_id: uuid.UUID) -> FamilyMember | None:
        result = await self.db.execute(
            select(FamilyMember)
            .options(selectinload(FamilyMember.user))
            .where(FamilyMember.id == member_id, FamilyMember.family_id == family_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _has_pending_request(self, user_id: uuid.UUID, family_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(FamilyJoinRequest.id).where(
                FamilyJoinRequest.user_id == user_id,
                FamilyJoinRequest.family_id == family_id,
                FamilyJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
        return result.first() is not None

    async def _count_members(self, family_id: uuid.UUID, role: FamilyRole | None = None) -> int:
        query = select(func.count(FamilyMember.id)).where(FamilyMember.family_id == family_id)
        if role is not None:
            query = query.where(FamilyMember.role == role.value)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def _family_response(self, family_id: uuid.UUID, role: str | None) -> FamilyResponse:
        family = await self._load_family(family_id)
        if family is None:
            raise FamilyNotFound()
        return FamilyResponse(
            id=family.id,
            name=family.name,
            description=family.description,
            avatar_url=family.avatar_url,
            created_at=family.created_at,
            updated_at=family.updated_at,
            creator=UserSummary.model_validate(family.creator),
            member_count=await self._count_members(family_id),
            user_role=role,
        )

    def _invite_query(self):
        return (
            select(FamilyInvite)
            .options(
                selectinload(FamilyInvite.family),
                selectinload(FamilyInvite.sender),
                selectinload(FamilyInvite.receiver),
            )
            .execution_options(populate_existing=True)
        )

    def _join_request_query(self):
        return (
            select(FamilyJoinRequest)
            .options(
                selectinload(FamilyJoinRequest.user),
                selectinload(FamilyJoinRequest.family),
                selectinload(FamilyJoinRequest.invite),
                selectinload(FamilyJoinRequest.reviewer),
            )
            .execution_options(populate_existing=True)
        )

    async def _join_request_response(self, request_id: uuid.UUID) -> JoinRequestResponse:
        result = await self.db.execute(
            self._join_request_query().where(FamilyJoinRequest.id == request_id)
        )
        return JoinRequestResponse.model_validate(result.scalar_one())

    # -- Families -------------------------------------------------------------

    async def create_family(self, creator_id: uuid.UUID, data: FamilyCreate) -> FamilyResponse:
        """Create a family with the creator as its first ADMIN member."""
        family = Family(
            name=_clean_name(data.name),
            description=_clean_optional(data.description),
            avatar_url=_clean_optional(data.avatar_url),
            creator_id=creator_id,
        )
        family.members.append(FamilyMember(user_id=creator_id, role=FamilyRole.ADMIN.value))
        self.db.add(family)
        await self.db.flush()
        await self.db.commit()

        logger.info("Family %s created by user %s", family.id, creator_id)
        return await self._family_response(family.id, FamilyRole.ADMIN.value)

    async def get_user_families(self, user_id: uuid.UUID) -> list[FamilyResponse]:
        """All families the user belongs to, oldest membership first."""
        counts = (
            select(FamilyMember.family_id, func.count(FamilyMember.id).label("member_count"))
            .group_by(FamilyMember.family_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Family, FamilyMember.role, counts.c.member_count)
            .join(FamilyMember, FamilyMember.family_id == Family.id)
            .join(counts, counts.c.family_id == Family.id)
            .where(FamilyMember.user_id == user_id)
            .options(selectinload(Family.creator))
            .order_by(FamilyMember.joined_at.asc())
            .execution_options(populate_existing=True)
        )
        return [
            FamilyResponse(
                id=family.id,
                name=family.name,
                description=family.description,
                avatar_url=family.avatar_url,
                created_at=family.created_at,
                updated_at=family.updated_at,
                creator=UserSummary.model_validate(family.creator),
                member_count=member_count,
                user_role=role,
            )
            for family, role, member_count in result.all()
        ]

    async def get_family_by_id(self, family_id: uuid.UUID, user_id: uuid.UUID) -> FamilyResponse:
        membership = await self._require_member(family_id, user_id)
        return await self._family_response(family_id, membership.role)

    async def update_family(
        self, family_id: uuid.UUID, user_id: uuid.UUID, data: FamilyUpdate,
    ) -> FamilyResponse:
        membership = await self._require_admin(family_id, user_id)
        family = await self._load_family(family_id)
        if family is None:
            raise FamilyNotFound()

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("name") is not None:
            family.name = _clean_name(update_data["name"])
        for field in ("description", "avatar_url"):
            if field in update_data:
                setattr(family, field, _clean_optional(update_data[field]))

        await self.db.flush()
        await self.db.commit()

        response = await self._family_response(family_id, membership.role)
        await self.notifier.notify_family_updated(
            family_id, "details", response.model_dump(mode="json"),
        )
        return response

    async def delete_family(self, family_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete a family and everything it owns. Creator only."""
        result = await self.db.execute(
            select(Family)
            .options(
                selectinload(Family.members),
                selectinload(Family.invites),
                selectinload(Family.join_requests),
            )
            .where(Family.id == family_id)
            .execution_options(populate_existing=True)
        )
        family = result.scalar_one_or_none()
        if family is None:
            raise FamilyNotFound()
        if family.creator_id != user_id:
            raise PermissionDenied("Only the family creator can delete the family")

        await self.db.delete(family)
        await self.db.flush()
        await self.db.commit()

        logger.info("Family %s deleted by user %s", family_id, user_id)
        await self.notifier.close_family_channel(family_id)

    # -- Members --------------------------------------------------------------

    async def get_family_members(
        self, family_id: uuid.UUID, user_id: uuid.UUID,
    ) -> list[FamilyMemberResponse]:
        await self._require_member(family_id, user_id)
        result = await self.db.execute(
            select(FamilyMember)
            .options(selectinload(FamilyMember.user))
            .where(FamilyMember.family_id == family_id)
            .order_by(FamilyMember.joined_at.asc())
            .execution_options(populate_existing=True)
        )
        return [FamilyMemberResponse.model_validate(m) for m in result.scalars().all()]

    async def update_member_role(
        self, family_id: uuid.UUID, admin_id: uuid.UUID, data: MemberRoleUpdate,
    ) -> FamilyMemberResponse:
        # The creator's role is not protected here; only removal and leaving are.
        await self._require_admin(family_id, admin_id)
        member = await self._load_member(data.member_id, family_id)
        if member is None:
            raise ResourceNotFound("Member not found")

        member.role = data.role.value
        await self.db.flush()
        await self.db.commit()

        logger.info("Member %s of family %s is now %s", member.user_id, family_id, member.role)
        await self.notifier.notify_member_role_changed(family_id, member.user_id, member.role)
        return FamilyMemberResponse.model_validate(member)

    async def remove_member(
        self, family_id: uuid.UUID, admin_id: uuid.UUID, member_id: uuid.UUID,
    ) -> None:
        await self._require_admin(family_id, admin_id)
        member = await self._load_member(member_id, family_id)
        if member is None:
            raise ResourceNotFound("Member not found")

        family = await self.db.get(Family, family_id)
        if member.user_id == family.creator_id:
            raise CannotRemoveCreator()
        if member.user_id == admin_id:
            raise ValidationError("Cannot remove yourself. Leave the family instead.")

        removed_user_id = member.user_id
        await self.db.delete(member)
        await self.db.flush()
        await self.db.commit()

        logger.info("User %s removed from family %s by %s", removed_user_id, family_id, admin_id)
        await self.notifier.remove_user_from_family_channel(removed_user_id, family_id)
        await self.notifier.notify_family_updated(
            family_id, "members", {"removedUserId": str(removed_user_id)},
        )

    async def leave_family(self, family_id: uuid.UUID, user_id: uuid.UUID) -> None:
        membership = await self._require_member(family_id, user_id)
        family = await self.db.get(Family, family_id)
        if family.creator_id == user_id:
            raise CannotLeaveAsCreator()

        await self.db.delete(membership)
        await self.db.flush()
        await self.db.commit()

        logger.info("User %s left family %s", user_id, family_id)
        await self.notifier.remove_user_from_family_channel(user_id, family_id)
        await self.notifier.notify_family_updated(
            family_id, "members", {"removedUserId": str(user_id)},
        )

    async def create_virtual_member(
        self, family_id: uuid.UUID, admin_id: uuid.UUID, data: VirtualMemberCreate,
    ) -> FamilyMemberResponse:
        """Add a non-login member (e.g. a small child) to the family."""
        await self._require_admin(family_id, admin_id)

        user = User(
            name=_clean_name(data.name),
            avatar_url=_clean_optional(data.avatar_url),
            is_virtual=True,
        )
        member = FamilyMember(user=user, family_id=family_id, role=FamilyRole.MEMBER.value)
        self.db.add_all([user, member])
        await self.db.flush()
        await self.db.commit()

        member = await self._load_member(member.id, family_id)
        await self.notifier.notify_family_updated(
            family_id, "members", {"addedUserId": str(user.id), "isVirtual": True},
        )
        return FamilyMemberResponse.model_validate(member)

    async def update_virtual_member(
        self,
        family_id: uuid.UUID,
        admin_id: uuid.UUID,
        user_id: uuid.UUID,
        data: VirtualMemberUpdate,
    ) -> FamilyMemberResponse:
        await self._require_admin(family_id, admin_id)
        result = await self.db.execute(
            select(FamilyMember)
            .options(selectinload(FamilyMember.user))
            .where(FamilyMember.family_id == family_id, FamilyMember.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise ResourceNotFound("Member not found")
        if not member.user.is_virtual:
            raise ValidationError("Only virtual members can be edited by an admin")

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("name") is not None:
            member.user.name = _clean_name(update_data["name"])
        if "avatar_url" in update_data:
            member.user.avatar_url = _clean_optional(update_data["avatar_url"])

        await self.db.flush()
        await self.db.commit()

        await self.notifier.notify_family_updated(
            family_id, "members", {"updatedUserId": str(user_id)},
        )
        return FamilyMemberResponse.model_validate(member)

    # -- Invites --------------------------------------------------------------

    async def create_invite(self, sender_id: uuid.UUID, data: InviteCreate) -> InviteResponse:
        """Issue a new invite code for a family.

        Older invites of the family that could still be redeemed are
        expired, so only the newest code is valid.
        """
        await self._require_admin(data.family_id, sender_id)

        receiver_id = None
        if data.receiver_email:
            result = await self.db.execute(select(User).where(User.email == data.receiver_email))
            receiver = result.scalar_one_or_none()
            if receiver is not None:
                if await self._get_membership(data.family_id, receiver.id) is not None:
                    raise AlreadyFamilyMember()
                receiver_id = receiver.id

        now = utcnow()
        await self.db.execute(
            update(FamilyInvite)
            .where(
                FamilyInvite.family_id == data.family_id,
                FamilyInvite.status == InviteStatus.PENDING.value,
                FamilyInvite.expires_at > now,
            )
            .values(status=InviteStatus.EXPIRED.value, responded_at=now)
            .execution_options(synchronize_session=False)
        )

        invite = FamilyInvite(
            code=await generate_invite_code(self.db),
            family_id=data.family_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            status=InviteStatus.PENDING.value,
            expires_at=now + timedelta(days=data.expires_in),
        )
        self.db.add(invite)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ResourceAlreadyExists("Invite code collision, please retry")
        await self.db.commit()

        logger.info("Invite %s created for family %s", invite.code, data.family_id)
        result = await self.db.execute(self._invite_query().where(FamilyInvite.id == invite.id))
        return InviteResponse.model_validate(result.scalar_one())

    async def get_family_invites(self, family_id: uuid.UUID, user_id: uuid.UUID) -> list[InviteResponse]:
        await self._require_admin(family_id, user_id)
        result = await self.db.execute(
            self._invite_query()
            .where(FamilyInvite.family_id == family_id)
            .order_by(FamilyInvite.created_at.desc())
        )
        return [InviteResponse.model_validate(i) for i in result.scalars().all()]

    # -- Join requests --------------------------------------------------------

    async def request_to_join_family(
        self, user_id: uuid.UUID, data: JoinFamilyRequest,
    ) -> JoinRequestResponse:
        """Redeem an invite code into a PENDING join request.

        An invite found past its expiry is marked EXPIRED and committed
        before the error is raised, so the expiry sticks.
        """
        code = data.code.strip().upper()
        result = await self.db.execute(
            select(FamilyInvite)
            .where(FamilyInvite.code == code)
            .execution_options(populate_existing=True)
        )
        invite = result.scalar_one_or_none()
        if invite is None:
            raise InviteNotFound()

        if as_utc(invite.expires_at) < utcnow():
            if invite.status == InviteStatus.PENDING.value:
                await self.db.execute(
                    update(FamilyInvite)
                    .where(
                        FamilyInvite.id == invite.id,
                        FamilyInvite.status == InviteStatus.PENDING.value,
                    )
                    .values(status=InviteStatus.EXPIRED.value, responded_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                await self.db.refresh(invite)
                logger.info("Invite %s expired on redemption", invite.code)
            raise InviteExpired()

        if invite.status == InviteStatus.EXPIRED.value:
            raise InviteExpired()
        if invite.status != InviteStatus.PENDING.value:
            raise InviteAlreadyUsed()
        if invite.receiver_id is not None and invite.receiver_id != user_id:
            raise PermissionDenied("This invite was issued to a different user")

        if await self._get_membership(invite.family_id, user_id) is not None:
            raise AlreadyFamilyMember("You are already a member of this family")

        if await self._has_pending_request(user_id, invite.family_id):
            raise ResourceAlreadyExists(DUPLICATE_REQUEST_MESSAGE)

        join_request = FamilyJoinRequest(
            user_id=user_id,
            family_id=invite.family_id,
            invite_id=invite.id,
            status=JoinRequestStatus.PENDING.value,
            message=_clean_optional(data.message),
        )
        self.db.add(join_request)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ResourceAlreadyExists(DUPLICATE_REQUEST_MESSAGE)
        await self.db.commit()

        logger.info("User %s requested to join family %s", user_id, invite.family_id)
        response = await self._join_request_response(join_request.id)
        await self.notifier.notify_join_request_created(
            invite.family_id, response.model_dump(mode="json"),
        )
        return response

    async def get_family_join_requests(
        self, family_id: uuid.UUID, user_id: uuid.UUID,
    ) -> list[JoinRequestResponse]:
        await self._require_admin(family_id, user_id)
        result = await self.db.execute(
            self._join_request_query()
            .where(FamilyJoinRequest.family_id == family_id)
            .order_by(FamilyJoinRequest.created_at.desc())
        )
        return [JoinRequestResponse.model_validate(r) for r in result.scalars().all()]

    async def get_user_join_requests(self, user_id: uuid.UUID) -> list[JoinRequestResponse]:
        result = await self.db.execute(
            self._join_request_query()
            .where(FamilyJoinRequest.user_id == user_id)
            .order_by(FamilyJoinRequest.created_at.desc())
        )
        return [JoinRequestResponse.model_validate(r) for r in result.scalars().all()]

    async def respond_to_join_request(
        self, admin_id: uuid.UUID, request_id: uuid.UUID, data: RespondToJoinRequest,
    ) -> JoinRequestResponse:
        """Approve or reject a PENDING join request.

        The status flip is a compare-and-set on PENDING, so of two admins
        responding concurrently exactly one wins; the other gets
        JoinRequestAlreadyProcessed. Approval inserts the membership and
        marks the invite ACCEPTED in the same transaction.
        """
        join_request = await self.db.get(FamilyJoinRequest, request_id, populate_existing=True)
        if join_request is None:
            raise ResourceNotFound("Join request not found")

        await self._require_admin(join_request.family_id, admin_id)
        if join_request.status != JoinRequestStatus.PENDING.value:
            raise JoinRequestAlreadyProcessed()

        user_id = join_request.user_id
        family_id = join_request.family_id
        invite_id = join_request.invite_id
        approved = data.response == JoinRequestStatus.APPROVED.value
        now = utcnow()

        result = await self.db.execute(
            update(FamilyJoinRequest)
            .where(
                FamilyJoinRequest.id == request_id,
                FamilyJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
            .values(status=data.response, reviewer_id=admin_id, responded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise JoinRequestAlreadyProcessed()

        if approved:
            self.db.add(FamilyMember(
                user_id=user_id, family_id=family_id, role=FamilyRole.MEMBER.value,
            ))
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                raise AlreadyFamilyMember()

            await self.db.execute(
                update(FamilyInvite)
                .where(
                    FamilyInvite.id == invite_id,
                    FamilyInvite.status == InviteStatus.PENDING.value,
                )
                .values(status=InviteStatus.ACCEPTED.value, responded_at=now)
                .execution_options(synchronize_session=False)
            )

        await self.db.commit()
        logger.info(
            "Join request %s %s by user %s", request_id, data.response.lower(), admin_id,
        )

        response = await self._join_request_response(request_id)
        if approved:
            await self.notifier.notify_join_request_approved(user_id, family_id, response.family.name)
        else:
            await self.notifier.notify_join_request_rejected(user_id, family_id, response.family.name)
        return response

    async def cancel_join_request(self, user_id: uuid.UUID, request_id: uuid.UUID) -> None:
        """Withdraw the caller's own PENDING join request."""
        join_request = await self.db.get(FamilyJoinRequest, request_id, populate_existing=True)
        if join_request is None:
            raise ResourceNotFound("Join request not found")
        if join_request.user_id != user_id:
            raise PermissionDenied("You can only cancel your own join requests")
        if join_request.status != JoinRequestStatus.PENDING.value:
            raise JoinRequestAlreadyProcessed("Only pending join requests can be cancelled")

        await self.db.delete(join_request)
        await self.db.flush()
        await self.db.commit()
        logger.info("Join request %s cancelled by user %s", request_id, user_id)

    # -- Stats ----------------------------------------------------------------

    async def get_family_stats(self, family_id: uuid.UUID, user_id: uuid.UUID) -> FamilyStatsResponse:
        await self._require_admin(family_id, user_id)
        family = await self.db.get(Family, family_id)
        if family is None:
            raise FamilyNotFound()

        pending_invites = await self.db.execute(
            select(func.count(FamilyInvite.id)).where(
                FamilyInvite.family_id == family_id,
                FamilyInvite.status == InviteStatus.PENDING.value,
            )
        )
        pending_requests = await self.db.execute(
            select(func.count(FamilyJoinRequest.id)).where(
                FamilyJoinRequest.family_id == family_id,
                FamilyJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
        return FamilyStatsResponse(
            total_members=await self._count_members(family_id),
            total_admins=await self._count_members(family_id, FamilyRole.ADMIN),
            pending_invites=pending_invites.scalar_one(),
            pending_join_requests=pending_requests.scalar_one(),
            created_at=family.created_at,
        )
