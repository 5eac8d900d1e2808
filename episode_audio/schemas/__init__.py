"""
Pydantic schemas for API payloads and lease store transitions.
"""
from episode_audio.schemas.lease import (
    ClaimRequest,
    LeaseHandle,
    MarkReadyRequest,
    MarkFailedRequest,
    BatchRunClaimRequest,
    BatchRunHandle,
)
from episode_audio.schemas.segment import SegmentScript, SegmentResponse, SegmentListResponse
from episode_audio.schemas.episode import (
    StitchResponse,
    BlockedSegment,
    MismatchedSegment,
    PublishReadinessResponse,
    PublishRequest,
    PublishResponse,
    DailyStitchResponse,
)

__all__ = [
    'ClaimRequest',
    'LeaseHandle',
    'MarkReadyRequest',
    'MarkFailedRequest',
    'BatchRunClaimRequest',
    'BatchRunHandle',
    'SegmentScript',
    'SegmentResponse',
    'SegmentListResponse',
    'StitchResponse',
    'BlockedSegment',
    'MismatchedSegment',
    'PublishReadinessResponse',
    'PublishRequest',
    'PublishResponse',
    'DailyStitchResponse',
]
