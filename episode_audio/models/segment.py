"""
Segment model: one row per episode segment, carrying its audio job state.
"""
import uuid
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Integer, Float, JSON, UniqueConstraint, Index

from episode_audio.models.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite stores and compares."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AudioStatus(str, enum.Enum):
    """Audio job states for a segment."""
    pending = 'pending'
    generating = 'generating'
    ready = 'ready'
    failed = 'failed'


class Segment(Base):
    """
    An episode segment and its audio generation job.

    Identified by (episode_id, segment_key). The editorial fields are written
    by the upstream pipeline; the audio fields are written only by the worker
    holding the current lease or by the stale reclaimer.

    Attributes:
        script_version: Editorial version of script_text
        gate_decision: Editorial gate outcome (approve, rewrite, block, ...)
        blocking_reasons: Reasons reported by the editorial gate
        audio_status: Null until upstream marks the segment pending
        attempt_count: Claims made in the current cycle
        job_key: Fingerprint of episode, segment, script version, voice, model
        claimed_at: When the current lease was taken
        next_attempt_at: Earliest time a scheduled retry may be claimed
        audio_storage_path: Blob path, set only when ready
        audio_duration_seconds: Probed duration, set only when ready
        last_error_class: Classified error of the latest failure
        last_error_message: Message of the latest failure
    """
    __tablename__ = 'segments'
    __table_args__ = (
        UniqueConstraint('episode_id', 'segment_key', name='uq_segments_episode_segment'),
        Index('ix_segments_audio_status', 'audio_status'),
        Index('ix_segments_episode_date', 'program', 'episode_date'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    episode_id = Column(String(100), nullable=False)
    episode_date = Column(String(10), nullable=False)
    program = Column(String(100), nullable=False)
    segment_key = Column(String(100), nullable=False)

    script_version = Column(Integer, nullable=False, default=1)
    script_text = Column(Text, nullable=False)
    tts_voice_id = Column(String(100), nullable=True)
    tts_model_id = Column(String(100), nullable=True)
    gate_decision = Column(String(20), nullable=True)
    blocking_reasons = Column(JSON, nullable=False, default=list)

    audio_status = Column(String(20), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    job_key = Column(Text, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    audio_storage_path = Column(Text, nullable=True)
    audio_duration_seconds = Column(Float, nullable=True)
    audio_checksum_sha256 = Column(String(64), nullable=True)
    audio_codec = Column(String(20), nullable=True)
    last_error_class = Column(String(50), nullable=True)
    last_error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f'<Segment {self.episode_id}/{self.segment_key} audio_status={self.audio_status}>'
