from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from interview_scheduling.db.base import Base


class SchedulingLink(Base):
    """
    One shareable offer to book exactly one interview inside [start_date, end_date].
    `used` and `interview_id` move together; the public booking flow flips them
    with a single conditional UPDATE.
    """

    __tablename__ = "scheduling_link"

    scheduling_link_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)

    application_id: Mapped[int] = mapped_column(Integer, index=True)
    interview_stage_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interviewer_ids_json: Mapped[str] = mapped_column(Text)

    duration_minutes: Mapped[int] = mapped_column(Integer)
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=0)
    location_type: Mapped[str] = mapped_column(String(20))
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime)
    end_date: Mapped[datetime] = mapped_column(DateTime)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    used: Mapped[bool] = mapped_column(Boolean, default=False)
    interview_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allow_reschedule: Mapped[bool] = mapped_column(Boolean, default=True)
    reschedule_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True, index=True)

    created_by: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def interviewer_ids(self) -> list[str]:
        data = json.loads(self.interviewer_ids_json or "[]")
        return [str(item) for item in data]
