"""
Typed payloads for lease store transitions.

Each transition takes a validated request and returns a typed handle, so
malformed values are rejected at the boundary instead of in the database.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, ConfigDict

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'


class ClaimRequest(BaseModel):
    """Claim a pending segment for the expected job fingerprint."""
    model_config = ConfigDict(frozen=True)

    episode_id: str = Field(..., min_length=1)
    segment_key: str = Field(..., min_length=1)
    job_key: str = Field(..., min_length=1)


class LeaseHandle(BaseModel):
    """Proof of an active claim; required for every later transition."""
    model_config = ConfigDict(frozen=True)

    episode_id: str
    segment_key: str
    job_key: str
    attempt: int = Field(..., ge=1)
    claimed_at: datetime


class MarkReadyRequest(BaseModel):
    """Commit a generated segment."""
    audio_storage_path: str = Field(..., min_length=1)
    audio_duration_seconds: float = Field(..., gt=0)
    checksum_sha256: Optional[str] = Field(None, min_length=64, max_length=64)
    codec: Optional[str] = None


class MarkFailedRequest(BaseModel):
    """Record a classified failure."""
    error_class: str = Field(..., min_length=1)
    error_message: str = ''


class BatchRunClaimRequest(BaseModel):
    """Claim the lease for one batch work window."""
    program: str = Field(..., min_length=1)
    start_date: str = Field(..., pattern=DATE_PATTERN)
    window_days: int = Field(..., ge=1)
    kind: Literal['weekly_scripts', 'daily_stitch']
    triggered_by: Literal['cron', 'manual'] = 'cron'
    external_job_id: Optional[str] = None


class BatchRunHandle(BaseModel):
    """A claimed batch run."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    program: str
    start_date: str
    window_days: int
    kind: str
    status: str
    claimed_at: datetime
    claim_token: str
