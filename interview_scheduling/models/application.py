from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from interview_scheduling.db.base import Base


class Application(Base):
    """Read-only view of a candidate's job application, owned by the ATS."""

    __tablename__ = "application"

    application_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_first_name: Mapped[str] = mapped_column(String(100))
    candidate_last_name: Mapped[str] = mapped_column(String(100))
    candidate_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_title: Mapped[str] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def candidate_full_name(self) -> str:
        return f"{self.candidate_first_name} {self.candidate_last_name}".strip()
