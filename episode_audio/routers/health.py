"""
Health check endpoint.
"""
from pydantic import BaseModel
from fastapi import APIRouter, Depends

from episode_audio.config import APP_VERSION
from episode_audio.routers.dependencies import get_worker
from episode_audio.services.audio_worker import AudioWorker


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    worker_running: bool
    version: str


@router.get('/health', response_model=HealthResponse)
async def health_check(worker: AudioWorker = Depends(get_worker)) -> HealthResponse:
    """
    Check server health status.

    Fast response - no database queries.
    """
    return HealthResponse(
        status='ok',
        worker_running=worker.is_running,
        version=APP_VERSION,
    )
