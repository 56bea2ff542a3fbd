"""Invite code generation.

Codes are 4 random bytes rendered as 8 uppercase hex characters, e.g.
``3FA9C01B``. Uniqueness is checked against every stored invite.
"""

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famsync.models.invite import FamilyInvite

INVITE_CODE_BYTES = 4


def _generate_code() -> str:
    return secrets.token_hex(INVITE_CODE_BYTES).upper()


async def generate_invite_code(db: AsyncSession) -> str:
    """Generate an invite code not used by any existing invite.

    The code space is 2**32, so collisions are rare and the loop is
    unbounded. The unique index on ``family_invites.code`` still guards
    against a concurrent insert of the same code.
    """
    while True:
        code = _generate_code()
        result = await db.execute(
            select(FamilyInvite.id).where(FamilyInvite.code == code)
        )
        if result.scalar_one_or_none() is None:
            return code
