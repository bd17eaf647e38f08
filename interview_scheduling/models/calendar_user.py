from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from interview_scheduling.db.base import Base


class CalendarUser(Base):
    """Calendar preferences of a platform user (interviewer or recruiter)."""

    __tablename__ = "calendar_user"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    working_hours_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    calendar_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    calendar_credentials_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def calendar_credentials(self) -> dict[str, Any] | None:
        if not self.calendar_credentials_json:
            return None
        data = json.loads(self.calendar_credentials_json)
        return data if isinstance(data, dict) else None

    @property
    def has_calendar(self) -> bool:
        return bool(self.calendar_provider) and self.calendar_credentials is not None
