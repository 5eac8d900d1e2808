"""
SQLAlchemy models.
"""
from episode_audio.models.base import Base
from episode_audio.models.segment import Segment, AudioStatus, utcnow
from episode_audio.models.batch_run import BatchRun, BatchRunStatus, BatchRunKind

__all__ = [
    'Base',
    'Segment',
    'AudioStatus',
    'BatchRun',
    'BatchRunStatus',
    'BatchRunKind',
    'utcnow',
]
