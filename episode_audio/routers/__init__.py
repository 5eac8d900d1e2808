"""
FastAPI routers.
"""
from episode_audio.routers.health import router as health_router
from episode_audio.routers.segments import router as segments_router
from episode_audio.routers.episodes import router as episodes_router
from episode_audio.routers.batch_runs import router as batch_runs_router

__all__ = ['health_router', 'segments_router', 'episodes_router', 'batch_runs_router']
