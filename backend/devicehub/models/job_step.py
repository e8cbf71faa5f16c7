"""JobStep model: durable step checkpoints for the job engine"""
from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from devicehub.database import Base
from devicehub.utils.dates import utcnow


class JobStep(Base):
    """Memoized output of one named step inside one function run.

    When a run is retried or re-delivered, steps found here are not executed
    again; their stored output is returned instead.
    """

    __tablename__ = "job_steps"
    __table_args__ = (
        UniqueConstraint("run_id", "step_id", name="uq_job_steps_run_step"),
    )

    id = Column(Integer, primary_key=True)
    run_id = Column(String(255), nullable=False, index=True)
    step_id = Column(String(255), nullable=False)
    output = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
