from __future__ import annotations
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.challenge import Challenge
from portal.models.submission import Submission
from portal.services.catalog import to_ref
from portal.services.progress import SubmissionEvent


class SqlSubmissionLog:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_correct_submissions(self, user_id: UUID) -> list[SubmissionEvent]:
        """Correct submissions for one user, newest first, outer-joined with the catalog."""
        q = (
            select(Submission, Challenge)
            .outerjoin(Challenge, Challenge.id == Submission.challenge_id)
            .where(Submission.user_id == user_id, Submission.is_correct.is_(True))
            .order_by(Submission.created_at.desc())
        )
        rows = (await self.session.execute(q)).all()
        return [
            SubmissionEvent(
                user_id=s.user_id,
                challenge_id=s.challenge_id,
                created_at=s.created_at,
                is_correct=s.is_correct,
                is_first_blood=s.is_first_blood,
                challenge=to_ref(ch) if ch is not None else None,
            )
            for (s, ch) in rows
        ]
