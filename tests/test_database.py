"""
Database layer tests.

Tests for SQLite setup, WAL mode, and the Segment and BatchRun models.
"""
import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from episode_audio.database import build_engine, init_db, close_db
from episode_audio.models import Segment, AudioStatus, BatchRun, BatchRunStatus, BatchRunKind


class TestDatabaseConfiguration:
    """Tests for database configuration."""

    def test_database_path_under_data_dir(self):
        """Test the default database lives in the data directory."""
        from episode_audio.config import DATA_DIR, DATABASE_PATH

        assert DATABASE_PATH.parent == DATA_DIR
        assert DATABASE_PATH.name == 'episode_audio.db'


class TestWALMode:
    """Tests for SQLite WAL mode."""

    @pytest.mark.asyncio
    async def test_init_db_enables_wal(self, tmp_path):
        """Test init_db creates tables and switches to WAL."""
        engine = build_engine(f'sqlite+aiosqlite:///{tmp_path / "wal.db"}')
        try:
            await init_db(engine)
            async with engine.connect() as conn:
                mode = (await conn.execute(text('PRAGMA journal_mode'))).scalar()
                tables = (await conn.execute(
                    text("SELECT name FROM sqlite_master WHERE type='table'")
                )).scalars().all()
        finally:
            await close_db(engine)

        assert mode.lower() == 'wal'
        assert {'segments', 'batch_runs'} <= set(tables)


class TestSegmentModel:
    """Tests for the Segment SQLAlchemy model."""

    @pytest.mark.asyncio
    async def test_create_segment(self, test_session: AsyncSession):
        """Test creating a segment record with defaults."""
        segment = Segment(
            episode_id='ep-1',
            episode_date='2025-01-06',
            program='daily-brief',
            segment_key='intro',
            script_text='Hello world',
        )
        test_session.add(segment)
        await test_session.commit()

        result = await test_session.execute(select(Segment).where(Segment.id == segment.id))
        saved = result.scalar_one()

        assert len(saved.id) == 36
        assert saved.audio_status is None
        assert saved.attempt_count == 0
        assert saved.blocking_reasons == []
        assert saved.created_at is not None

    @pytest.mark.asyncio
    async def test_episode_segment_key_is_unique(self, test_session: AsyncSession):
        """Test one row per (episode_id, segment_key)."""
        for _ in range(2):
            test_session.add(Segment(
                episode_id='ep-1',
                episode_date='2025-01-06',
                program='daily-brief',
                segment_key='intro',
                script_text='Hello',
            ))

        with pytest.raises(IntegrityError):
            await test_session.commit()

    @pytest.mark.asyncio
    async def test_blocking_reasons_round_trip(self, test_session: AsyncSession):
        """Test JSON blocking reasons are stored as a list."""
        segment = Segment(
            episode_id='ep-1',
            episode_date='2025-01-06',
            program='daily-brief',
            segment_key='main_themes',
            script_text='Body',
            gate_decision='rewrite',
            blocking_reasons=['tone', 'length'],
            audio_status=AudioStatus.pending.value,
        )
        test_session.add(segment)
        await test_session.commit()

        result = await test_session.execute(select(Segment.blocking_reasons).where(Segment.id == segment.id))
        assert result.scalar_one() == ['tone', 'length']


class TestBatchRunModel:
    """Tests for the BatchRun model."""

    @pytest.mark.asyncio
    async def test_window_is_unique(self, test_session: AsyncSession):
        """Test one run per (program, start_date, window_days, kind)."""
        for _ in range(2):
            test_session.add(BatchRun(
                program='daily-brief',
                start_date='2025-01-06',
                window_days=1,
                kind=BatchRunKind.daily_stitch.value,
            ))

        with pytest.raises(IntegrityError):
            await test_session.commit()

    @pytest.mark.asyncio
    async def test_defaults(self, test_session: AsyncSession):
        """Test a new run starts running and cron-triggered."""
        run = BatchRun(program='daily-brief', start_date='2025-01-06', window_days=1, kind='daily_stitch')
        test_session.add(run)
        await test_session.commit()

        assert run.status == BatchRunStatus.running.value
        assert run.triggered_by == 'cron'
        assert run.claimed_at is not None


class TestStatusEnums:
    """Tests for status enums."""

    def test_audio_status_values(self):
        """Test AudioStatus enum has the lifecycle values."""
        assert [s.value for s in AudioStatus] == ['pending', 'generating', 'ready', 'failed']

    def test_audio_status_is_string(self):
        """Test AudioStatus inherits from str for JSON serialization."""
        assert isinstance(AudioStatus.pending, str)
        assert AudioStatus.ready == 'ready'
