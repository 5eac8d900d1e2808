#!/usr/bin/env python3
"""
EpisodeAudio FastAPI Server

Segment audio job pipeline: upstream marks approved segments pending, the
background worker synthesizes and checks them, and episodes are stitched and
gated for publishing.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from episode_audio.config import APP_NAME, APP_VERSION, SERVER_HOST, SERVER_PORT, WORKER_AUTOSTART
from episode_audio.database import init_db, close_db, async_session_factory
from episode_audio.routers import health_router, segments_router, episodes_router, batch_runs_router
from episode_audio.services.audio_qa import QualityGate
from episode_audio.services.audio_tools import FfmpegAudioTools
from episode_audio.services.audio_worker import AudioWorker
from episode_audio.services.blob_store import build_blob_store
from episode_audio.services.lease_store import SegmentLeaseStore, BatchRunStore
from episode_audio.services.publish_gate import PublishReadinessGate
from episode_audio.services.publishing import LocalOnlyPublisher
from episode_audio.services.stitcher import Stitcher, StitchWorker
from episode_audio.services.synthesis import SynthesisClient


def build_components(app: FastAPI, session_factory=async_session_factory):
    """Wire the pipeline components onto app.state."""
    lease_store = SegmentLeaseStore(session_factory)
    blob_store = build_blob_store()
    audio_tools = FfmpegAudioTools()

    app.state.lease_store = lease_store
    app.state.batch_runs = BatchRunStore(session_factory)
    app.state.blob_store = blob_store
    app.state.worker = AudioWorker(
        lease_store,
        SynthesisClient(),
        QualityGate(audio_tools),
        blob_store,
    )
    app.state.stitcher = Stitcher(lease_store, blob_store, audio_tools)
    app.state.stitch_worker = StitchWorker(app.state.stitcher)
    app.state.publish_gate = PublishReadinessGate(lease_store, blob_store)
    app.state.publisher = LocalOnlyPublisher()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Initialize database and create tables
        - Build stores and adapters
        - Start audio worker

    Shutdown:
        - Stop audio worker
        - Close blob store client
        - Close database connections
    """
    print(f'Starting {APP_NAME} v{APP_VERSION}...')

    print('Initializing database...')
    await init_db()

    build_components(app)

    worker = app.state.worker
    if WORKER_AUTOSTART:
        print('Starting audio worker...')
        await worker.start()
    else:
        print('Audio worker autostart disabled')

    print(f'Server ready at http://{SERVER_HOST}:{SERVER_PORT}')
    print('API documentation available at /docs')

    yield

    print('Shutting down...')

    await worker.stop()

    aclose = getattr(app.state.blob_store, 'aclose', None)
    if aclose is not None:
        await aclose()

    await close_db()

    print('Shutdown complete.')


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description='Segment audio job pipeline: synthesis, quality gate, stitching and publish readiness.',
    version=APP_VERSION,
    lifespan=lifespan,
)

# Register routers
app.include_router(health_router)
app.include_router(segments_router)
app.include_router(episodes_router)
app.include_router(batch_runs_router)


if __name__ == '__main__':
    uvicorn.run(
        app,
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=False,
        log_level='info',
    )
