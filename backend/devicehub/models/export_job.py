"""Export job model"""
from sqlalchemy import Column, DateTime, Integer, String, Text

from devicehub.database import Base
from devicehub.utils.dates import utcnow

JOB_FORMATS = ("json", "csv")

# Forward-only ordering; completed and failed are both terminal
JOB_STATUS_RANK = {
    "accepted": 0,
    "queued": 1,
    "processing": 2,
    "completed": 3,
    "failed": 3,
}
TERMINAL_STATUSES = ("completed", "failed")


class ExportJob(Base):
    """ExportJob model - one asynchronous log export requested by a user"""

    __tablename__ = "export_jobs"

    id = Column(Integer, primary_key=True)
    job_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    device_id = Column(Integer, nullable=False)
    start_date = Column(String(64), nullable=False)
    end_date = Column(String(64), nullable=False)
    format = Column(String(10), nullable=False)
    status = Column(String(20), default="accepted", nullable=False, index=True)
    file_url = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def can_transition_to(self, status: str) -> bool:
        if self.status in TERMINAL_STATUSES:
            return False
        return JOB_STATUS_RANK[status] > JOB_STATUS_RANK[self.status]
