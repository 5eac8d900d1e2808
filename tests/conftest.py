"""
Pytest fixtures for testing.
"""
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from episode_audio.database import build_engine, build_session_factory, get_db
from episode_audio.models import Base
from episode_audio.schemas.lease import ClaimRequest, MarkReadyRequest
from episode_audio.schemas.segment import SegmentScript
from episode_audio.services.audio_qa import QualityGate
from episode_audio.services.audio_worker import AudioWorker
from episode_audio.services.blob_store import LocalBlobStore
from episode_audio.services.lease_store import SegmentLeaseStore, BatchRunStore
from episode_audio.services.paths import build_segment_audio_path
from episode_audio.services.publish_gate import PublishReadinessGate
from episode_audio.services.publishing import LocalOnlyPublisher
from episode_audio.services.stitcher import Stitcher, StitchWorker

from tests.fakes import FakeAudioTools, FakeClock, FakeSynthesizer, MODEL_ID, SCRIPT_WORDS, VOICE_ID, words


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture(scope='function')
async def test_engine(tmp_path):
    """Create a per-test SQLite database engine."""
    engine = build_engine(f'sqlite+aiosqlite:///{tmp_path / "test.db"}')
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope='function')
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def lease_store(session_factory, clock):
    return SegmentLeaseStore(session_factory, clock=clock, default_voice_id=None, default_model_id=None)


@pytest.fixture
def batch_runs(session_factory, clock):
    return BatchRunStore(session_factory, clock=clock)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / 'blobs')


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def audio_tools():
    return FakeAudioTools()


@pytest.fixture
def quality_gate(audio_tools):
    return QualityGate(audio_tools)


@pytest.fixture
def worker(lease_store, synthesizer, quality_gate, blob_store):
    return AudioWorker(lease_store, synthesizer, quality_gate, blob_store, poll_interval=0.01, batch_limit=10)


@pytest.fixture
def stitcher(lease_store, blob_store, audio_tools):
    return Stitcher(lease_store, blob_store, audio_tools, program='daily-brief')


@pytest.fixture
def stitch_worker(stitcher):
    return StitchWorker(stitcher)


@pytest.fixture
def publish_gate(lease_store, blob_store):
    return PublishReadinessGate(lease_store, blob_store, probe_timeout=1.0)


@pytest.fixture
def make_script():
    """Build a SegmentScript with passing defaults."""
    def _make(segment_key: str = 'intro', **overrides) -> SegmentScript:
        values = dict(
            episode_id='ep-2025-01-06',
            episode_date='2025-01-06',
            program='daily-brief',
            segment_key=segment_key,
            script_version=1,
            script_text=words(SCRIPT_WORDS.get(segment_key, 320)),
            tts_voice_id=VOICE_ID,
            tts_model_id=MODEL_ID,
        )
        values.update(overrides)
        return SegmentScript(**values)
    return _make


@pytest.fixture
def make_ready(lease_store, blob_store, make_script):
    """Arm, claim, upload and commit a segment; returns the stored row."""
    async def _make(segment_key: str = 'intro', audio: Optional[bytes] = None, duration: float = 30.0, **overrides):
        segment = await lease_store.mark_pending(make_script(segment_key, **overrides))
        handle = await lease_store.claim(ClaimRequest(
            episode_id=segment.episode_id,
            segment_key=segment.segment_key,
            job_key=segment.job_key,
        ))
        path = build_segment_audio_path(segment.episode_date, segment_key, segment.script_version, segment.job_key)
        await blob_store.upload(path, audio or f'<{segment_key}>'.encode())
        await lease_store.mark_ready(handle, MarkReadyRequest(
            audio_storage_path=path,
            audio_duration_seconds=duration,
        ))
        return await lease_store.get(segment.episode_id, segment_key)
    return _make


@pytest_asyncio.fixture
async def client(session_factory, lease_store, batch_runs, blob_store, worker, stitcher, stitch_worker, publish_gate):
    """Create a test client with the pipeline wired onto app.state."""
    from server import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.lease_store = lease_store
    app.state.batch_runs = batch_runs
    app.state.blob_store = blob_store
    app.state.worker = worker
    app.state.stitcher = stitcher
    app.state.stitch_worker = stitch_worker
    app.state.publish_gate = publish_gate
    app.state.publisher = LocalOnlyPublisher()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client

    app.dependency_overrides.clear()
