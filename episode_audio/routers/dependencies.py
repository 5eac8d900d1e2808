"""
Request dependencies resolving the pipeline components built in the lifespan.
"""
from fastapi import Request

from episode_audio.services.audio_worker import AudioWorker
from episode_audio.services.lease_store import SegmentLeaseStore, BatchRunStore
from episode_audio.services.publish_gate import PublishReadinessGate
from episode_audio.services.publishing import Publisher
from episode_audio.services.stitcher import Stitcher, StitchWorker


def get_lease_store(request: Request) -> SegmentLeaseStore:
    return request.app.state.lease_store


def get_batch_runs(request: Request) -> BatchRunStore:
    return request.app.state.batch_runs


def get_worker(request: Request) -> AudioWorker:
    return request.app.state.worker


def get_stitcher(request: Request) -> Stitcher:
    return request.app.state.stitcher


def get_stitch_worker(request: Request) -> StitchWorker:
    return request.app.state.stitch_worker


def get_publish_gate(request: Request) -> PublishReadinessGate:
    return request.app.state.publish_gate


def get_publisher(request: Request) -> Publisher:
    return request.app.state.publisher
