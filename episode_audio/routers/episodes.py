"""
Episode endpoints: stitching, publish readiness and publishing.
"""
from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import JSONResponse

from episode_audio.errors import SegmentsNotReadyError, EpisodeNotPublishableError
from episode_audio.routers.dependencies import get_stitcher, get_publish_gate, get_publisher
from episode_audio.schemas.episode import (
    StitchResponse,
    BlockedSegment,
    MismatchedSegment,
    PublishReadinessResponse,
    PublishRequest,
    PublishResponse,
)
from episode_audio.schemas.lease import DATE_PATTERN
from episode_audio.services.publish_gate import PublishReadinessGate
from episode_audio.services.publishing import Publisher, publish_episode
from episode_audio.services.stitcher import Stitcher


router = APIRouter(prefix='/episodes', tags=['episodes'])


def not_publishable_response(episode_id: str, error: EpisodeNotPublishableError) -> JSONResponse:
    body = PublishReadinessResponse(
        episode_id=episode_id,
        publishable=False,
        missing=error.missing,
        blocked=[BlockedSegment(**seg) for seg in error.blocked],
        mismatched=[MismatchedSegment(**seg) for seg in error.mismatched],
        artifact_path=error.artifact_path,
        artifact_missing=error.artifact_missing,
        message=str(error),
    )
    return JSONResponse(status_code=409, content=body.model_dump())


@router.post('/{episode_date}/stitch', response_model=StitchResponse)
async def stitch_episode(
    episode_date: str = Path(..., pattern=DATE_PATTERN),
    stitcher: Stitcher = Depends(get_stitcher),
) -> StitchResponse:
    """
    Stitch the ready segments of an episode date into one MP3.

    Raises:
        409: One or more required segments are missing or not ready
    """
    try:
        result = await stitcher.stitch_episode(episode_date)
    except SegmentsNotReadyError as e:
        raise HTTPException(
            status_code=409,
            detail={'message': str(e), 'missing': e.missing, 'not_ready': e.not_ready},
        )
    return StitchResponse(storage_path=result.storage_path, duration_seconds=result.duration_seconds)


@router.get(
    '/{episode_id}/publishable',
    response_model=PublishReadinessResponse,
    responses={409: {'model': PublishReadinessResponse}},
)
async def check_publishable(
    episode_id: str,
    gate: PublishReadinessGate = Depends(get_publish_gate),
):
    """
    Run the publish readiness gate.

    Returns 200 when publishable, otherwise 409 with the full punch list.
    """
    try:
        await gate.assert_publishable(episode_id)
    except EpisodeNotPublishableError as e:
        return not_publishable_response(episode_id, e)
    return PublishReadinessResponse(episode_id=episode_id, publishable=True)


@router.post(
    '/{episode_id}/publish',
    response_model=PublishResponse,
    responses={409: {'model': PublishReadinessResponse}},
)
async def publish(
    episode_id: str,
    request: PublishRequest,
    gate: PublishReadinessGate = Depends(get_publish_gate),
    publisher: Publisher = Depends(get_publisher),
):
    """
    Publish an episode through the configured publisher.

    The readiness gate runs first; a failing gate returns 409 with the same
    punch list as the publishable check and the publisher is never called.
    """
    try:
        result = await publish_episode(
            gate,
            publisher,
            episode_id,
            program=request.program,
            episode_date=request.episode_date,
            title=request.title,
            description=request.description,
        )
    except EpisodeNotPublishableError as e:
        return not_publishable_response(episode_id, e)
    return PublishResponse(
        episode_id=episode_id,
        publisher=publisher.name,
        external_id=result.external_id,
        url=result.url,
        metadata=result.metadata,
    )
