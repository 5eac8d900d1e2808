"""
Pydantic schemas for segment API operations.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from episode_audio.config import DEFAULT_PROGRAM
from episode_audio.schemas.lease import DATE_PATTERN


class SegmentScript(BaseModel):
    """Approved script handed over by the editorial pipeline."""
    episode_id: str = Field(..., min_length=1)
    episode_date: str = Field(..., pattern=DATE_PATTERN, description='YYYY-MM-DD')
    program: str = Field(DEFAULT_PROGRAM, min_length=1)
    segment_key: str = Field(..., min_length=1)
    script_version: int = Field(1, ge=1)
    script_text: str = Field(..., min_length=1)
    tts_voice_id: Optional[str] = Field(None, description='Voice id (null = configured default)')
    tts_model_id: Optional[str] = Field(None, description='Model id (null = configured default)')
    gate_decision: str = Field('approve', description='Editorial gate decision')
    blocking_reasons: List[str] = Field(default_factory=list)


class SegmentResponse(BaseModel):
    """Schema for segment response."""
    model_config = ConfigDict(from_attributes=True)

    episode_id: str
    episode_date: str
    program: str
    segment_key: str
    script_version: int
    gate_decision: Optional[str]
    blocking_reasons: List[str]
    audio_status: Optional[str]
    attempt_count: int
    job_key: Optional[str]
    claimed_at: Optional[datetime]
    next_attempt_at: Optional[datetime]
    audio_storage_path: Optional[str]
    audio_duration_seconds: Optional[float]
    last_error_class: Optional[str]
    last_error_message: Optional[str]
    updated_at: datetime


class SegmentListResponse(BaseModel):
    """Schema for segment list response."""
    segments: List[SegmentResponse]
    total: int
