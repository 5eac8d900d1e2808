"""
Segment endpoints: upstream hand-off and status lookup.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from episode_audio.database import get_db
from episode_audio.errors import LeaseConflictError
from episode_audio.models import Segment
from episode_audio.routers.dependencies import get_lease_store
from episode_audio.schemas.lease import DATE_PATTERN
from episode_audio.schemas.segment import SegmentScript, SegmentResponse, SegmentListResponse
from episode_audio.services.lease_store import SegmentLeaseStore


router = APIRouter(prefix='/segments', tags=['segments'])


@router.post('', response_model=SegmentResponse, status_code=201)
async def mark_segment_pending(
    script: SegmentScript,
    lease_store: SegmentLeaseStore = Depends(get_lease_store),
) -> SegmentResponse:
    """
    Arm a segment for audio generation.

    Returns immediately with pending status; the audio worker picks it up on
    its next poll.

    Raises:
        409: The segment is currently generating
    """
    try:
        segment = await lease_store.mark_pending(script)
    except LeaseConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SegmentResponse.model_validate(segment)


@router.get('', response_model=SegmentListResponse)
async def list_segments(
    episode_id: Optional[str] = Query(default=None),
    episode_date: Optional[str] = Query(default=None, pattern=DATE_PATTERN),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> SegmentListResponse:
    """
    List segments, filtered by episode id or date.

    Returns segments newest episode date first, then by segment key.
    """
    filters = []
    if episode_id:
        filters.append(Segment.episode_id == episode_id)
    if episode_date:
        filters.append(Segment.episode_date == episode_date)

    total = await db.scalar(select(func.count(Segment.id)).where(*filters))
    result = await db.execute(
        select(Segment)
        .where(*filters)
        .order_by(Segment.episode_date.desc(), Segment.segment_key.asc())
        .limit(limit)
    )
    segments = result.scalars().all()

    return SegmentListResponse(
        segments=[SegmentResponse.model_validate(s) for s in segments],
        total=total,
    )


@router.get('/{episode_id}/{segment_key}', response_model=SegmentResponse)
async def get_segment(
    episode_id: str,
    segment_key: str,
    lease_store: SegmentLeaseStore = Depends(get_lease_store),
) -> SegmentResponse:
    """Get audio status for one segment."""
    segment = await lease_store.get(episode_id, segment_key)
    if not segment:
        raise HTTPException(status_code=404, detail=f'Segment not found: {episode_id}/{segment_key}')
    return SegmentResponse.model_validate(segment)
