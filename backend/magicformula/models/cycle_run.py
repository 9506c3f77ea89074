"""
Run registry for buy/sell cycles.

The unique (job_type, run_date) constraint is the run-level lock: a second
run of the same job on the same date cannot insert its row.
"""

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint
from magicformula.core.database import Base
from magicformula.models.base import IdMixin, TimestampMixin


class CycleRun(Base, IdMixin, TimestampMixin):
    __tablename__ = "cycle_runs"
    __table_args__ = (
        UniqueConstraint("job_type", "run_date", name="uq_cycle_runs_job_date"),
    )

    job_type = Column(String(10), nullable=False)  # buy | sell
    run_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="running")
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    attempted = Column(Integer, default=0)
    succeeded = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    failed = Column(Integer, default=0)
