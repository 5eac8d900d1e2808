"""
Pydantic schemas for episode stitching, publish readiness and publishing.
"""
from typing import Any, Dict, Optional, List
from pydantic import BaseModel, Field

from episode_audio.config import DEFAULT_PROGRAM
from episode_audio.schemas.lease import DATE_PATTERN


class StitchResponse(BaseModel):
    """Result of stitching an episode."""
    storage_path: str
    duration_seconds: float


class BlockedSegment(BaseModel):
    """A segment that keeps an episode from publishing."""
    segment_key: str
    gate_decision: Optional[str]
    audio_status: Optional[str]
    blocking_reasons: List[str] = []


class MismatchedSegment(BaseModel):
    """Where a segment row says its episode lives, when the rows disagree."""
    segment_key: str
    program: str
    episode_date: str


class PublishReadinessResponse(BaseModel):
    """Publish gate outcome."""
    episode_id: str
    publishable: bool
    missing: List[str] = []
    blocked: List[BlockedSegment] = []
    mismatched: List[MismatchedSegment] = []
    artifact_path: Optional[str] = None
    artifact_missing: bool = False
    message: Optional[str] = None


class PublishRequest(BaseModel):
    """Publish a stitched episode."""
    episode_date: str = Field(..., pattern=DATE_PATTERN, description='YYYY-MM-DD')
    program: str = Field(DEFAULT_PROGRAM, min_length=1)
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None


class PublishResponse(BaseModel):
    """Outcome of a successful publish."""
    episode_id: str
    publisher: str
    external_id: str
    url: Optional[str] = None
    metadata: Dict[str, Any] = {}


class DailyStitchResponse(BaseModel):
    """Outcome of a leased daily stitch run."""
    claimed: bool
    run_id: Optional[str] = None
    stitched: List[str] = []
    skipped: List[str] = []
    failed: List[str] = []
