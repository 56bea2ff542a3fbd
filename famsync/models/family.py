import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from famsync.database import Base, utcnow


class FamilyRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class Family(Base):
    __tablename__ = "families"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    creator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False,
    )

    # Relationships: a family owns its members, invites and join requests
    creator: Mapped["User"] = relationship(foreign_keys=[creator_id])  # noqa: F821
    members: Mapped[list["FamilyMember"]] = relationship(
        back_populates="family", cascade="all, delete-orphan",
    )
    invites: Mapped[list["FamilyInvite"]] = relationship(  # noqa: F821
        back_populates="family", cascade="all, delete-orphan",
    )
    join_requests: Mapped[list["FamilyJoinRequest"]] = relationship(  # noqa: F821
        back_populates="family", cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Family(id={self.id}, name={self.name!r})>"


class FamilyMember(Base):
    __tablename__ = "family_members"
    __table_args__ = (
        UniqueConstraint("user_id", "family_id", name="uq_family_members_user_family"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    family_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("families.id", ondelete="CASCADE"), nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FamilyRole.MEMBER.value,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="memberships")  # noqa: F821
    family: Mapped["Family"] = relationship(back_populates="members")

    def __repr__(self) -> str:
        return f"<FamilyMember(user_id={self.user_id}, family_id={self.family_id}, role={self.role!r})>"
