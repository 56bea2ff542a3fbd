import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from famsync.database import Base, utcnow


class JoinRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class FamilyJoinRequest(Base):
    __tablename__ = "family_join_requests"
    __table_args__ = (
        Index(
            "uq_family_join_requests_pending",
            "user_id", "family_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
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
    invite_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("family_invites.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JoinRequestStatus.PENDING.value,
    )
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reviewer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False,
    )

    # Relationships
    user: Mapped["User"] = relationship(foreign_keys=[user_id])  # noqa: F821
    family: Mapped["Family"] = relationship(back_populates="join_requests")  # noqa: F821
    invite: Mapped["FamilyInvite"] = relationship()  # noqa: F821
    reviewer: Mapped["User | None"] = relationship(foreign_keys=[reviewer_id])  # noqa: F821

    def __repr__(self) -> str:
        return f"<FamilyJoinRequest(id={self.id}, user_id={self.user_id}, status={self.status!r})>"
