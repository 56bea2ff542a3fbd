"""Unit tests for invite code generation."""

import re
from datetime import timedelta

from famsync.database import utcnow
from famsync.models.family import Family, FamilyMember
from famsync.models.invite import FamilyInvite
from famsync.services import invite_codes
from famsync.services.invite_codes import generate_invite_code


class TestGenerateCode:
    def test_format(self):
        for _ in range(50):
            code = invite_codes._generate_code()
            assert re.fullmatch(r"[0-9A-F]{8}", code)

    async def test_unique_code(self, db_session):
        code = await generate_invite_code(db_session)
        assert re.fullmatch(r"[0-9A-F]{8}", code)

    async def test_retries_on_collision(self, db_session, make_user, monkeypatch):
        user_id = (await make_user()).id
        family = Family(name="Collision", creator_id=user_id)
        family.members.append(FamilyMember(user_id=user_id, role="ADMIN"))
        db_session.add(family)
        await db_session.flush()
        taken = FamilyInvite(
            code="DEADBEEF",
            family_id=family.id,
            sender_id=user_id,
            expires_at=utcnow() + timedelta(days=7),
        )
        db_session.add(taken)
        await db_session.commit()

        candidates = iter(["DEADBEEF", "DEADBEEF", "CAFEF00D"])
        monkeypatch.setattr(invite_codes, "_generate_code", lambda: next(candidates))

        assert await generate_invite_code(db_session) == "CAFEF00D"
