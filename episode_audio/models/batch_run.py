"""
Batch run lease model.
"""
import uuid
import enum

from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, UniqueConstraint

from episode_audio.models.base import Base
from episode_audio.models.segment import utcnow


class BatchRunStatus(str, enum.Enum):
    """Status states for batch runs."""
    running = 'running'
    completed = 'completed'
    failed = 'failed'


class BatchRunKind(str, enum.Enum):
    """Scheduled batch kinds that share the run lease."""
    weekly_scripts = 'weekly_scripts'
    daily_stitch = 'daily_stitch'


class BatchRun(Base):
    """
    Lease guaranteeing one scheduled batch per logical work window.

    Identified by (program, start_date, window_days, kind).
    """
    __tablename__ = 'batch_runs'
    __table_args__ = (
        UniqueConstraint('program', 'start_date', 'window_days', 'kind', name='uq_batch_runs_window'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    program = Column(String(100), nullable=False)
    start_date = Column(String(10), nullable=False)
    window_days = Column(Integer, nullable=False)
    kind = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=BatchRunStatus.running.value)
    triggered_by = Column(String(20), nullable=False, default='cron')
    external_job_id = Column(String(100), nullable=True)
    claimed_at = Column(DateTime, nullable=False, default=utcnow)
    # Rotated on every claim; finishing requires the current holder's token
    claim_token = Column(String(36), nullable=False, default=lambda: str(uuid.uuid4()))
    completed_at = Column(DateTime, nullable=True)
    output_payload = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f'<BatchRun {self.kind} {self.program}/{self.start_date} status={self.status}>'
