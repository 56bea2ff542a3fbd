import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from famsync.database import Base, utcnow


class InviteStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class FamilyInvite(Base):
    __tablename__ = "family_invites"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(String(8), unique=True, index=True, nullable=False)
    family_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("families.id", ondelete="CASCADE"), nullable=False,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False,
    )
    receiver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InviteStatus.PENDING.value,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )

    # Relationships
    family: Mapped["Family"] = relationship(back_populates="invites")  # noqa: F821
    sender: Mapped["User"] = relationship(foreign_keys=[sender_id])  # noqa: F821
    receiver: Mapped["User | None"] = relationship(foreign_keys=[receiver_id])  # noqa: F821

    def __repr__(self) -> str:
        return f"<FamilyInvite(id={self.id}, code={self.code!r}, status={self.status!r})>"
