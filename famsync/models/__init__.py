"""SQLAlchemy ORM models.

All models are imported here so that Alembic can discover them
via ``Base.metadata`` when generating migrations.
"""

from famsync.models.family import Family, FamilyMember, FamilyRole  # noqa: F401
from famsync.models.invite import FamilyInvite, InviteStatus  # noqa: F401
from famsync.models.join_request import FamilyJoinRequest, JoinRequestStatus  # noqa: F401
from famsync.models.user import User  # noqa: F401

__all__ = [
    "Family",
    "FamilyInvite",
    "FamilyJoinRequest",
    "FamilyMember",
    "FamilyRole",
    "InviteStatus",
    "JoinRequestStatus",
    "User",
]
