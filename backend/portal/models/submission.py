from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Boolean, DateTime, Index, func
from sqlalchemy.dialects.postgresql import UUID
from portal.db import Base


class Submission(Base):
    """
    Append-only attempt log. Rows are never updated or deleted.

    is_first_blood is decided by the flag checker at insert time.
    """
    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False
        # NOTE: no FK so history survives challenge deletion
    )

    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_first_blood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_submissions_user_correct_created", "user_id", "is_correct", "created_at"),
    )
