"""
Episode stitching.

Combines the ready segments of an episode date, in canonical order, into one
MP3 and uploads it to the episode's deterministic path. Nothing is uploaded
until concatenation has succeeded.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from episode_audio.config import DEFAULT_PROGRAM, REQUIRED_SEGMENTS, STITCH_SCAN_LIMIT
from episode_audio.errors import SegmentsNotReadyError, StaleLeaseError
from episode_audio.models import AudioStatus, BatchRunKind
from episode_audio.schemas.lease import BatchRunClaimRequest
from episode_audio.services import audio_log
from episode_audio.services.audio_tools import AudioTools
from episode_audio.services.blob_store import BlobStore
from episode_audio.services.lease_store import SegmentLeaseStore, BatchRunStore
from episode_audio.services.paths import build_episode_audio_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadySegmentAudio:
    segment_key: str
    audio_storage_path: str
    audio_duration_seconds: float


@dataclass(frozen=True)
class StitchResult:
    storage_path: str
    duration_seconds: float


@dataclass
class StitchSweepSummary:
    stitched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class Stitcher:
    """Stitches one episode date for a program."""

    def __init__(
        self,
        lease_store: SegmentLeaseStore,
        blob_store: BlobStore,
        audio_tools: AudioTools,
        program: str = DEFAULT_PROGRAM,
        required_segments: Sequence[str] = REQUIRED_SEGMENTS,
    ):
        self.lease_store = lease_store
        self.blob_store = blob_store
        self.audio_tools = audio_tools
        self.program = program
        self.required_segments = tuple(required_segments)

    def episode_path(self, episode_date: str) -> str:
        return build_episode_audio_path(self.program, episode_date)

    async def load_ready_segments(self, episode_date: str) -> List[ReadySegmentAudio]:
        """
        Ready segments for a date in required order.

        Raises:
            SegmentsNotReadyError: Listing every missing and not-ready segment
        """
        rows = await self.lease_store.get_segments_for_date(self.program, episode_date, self.required_segments)

        ready = []
        missing = []
        not_ready = []
        for segment_key in self.required_segments:
            row = rows.get(segment_key)
            if row is None:
                missing.append(segment_key)
            elif row.audio_status != AudioStatus.ready.value:
                not_ready.append({'segment_key': segment_key, 'status': row.audio_status})
            elif not row.audio_storage_path:
                not_ready.append({'segment_key': segment_key, 'status': 'ready but missing storage_path'})
            elif not row.audio_duration_seconds or row.audio_duration_seconds <= 0:
                not_ready.append({'segment_key': segment_key, 'status': 'ready but invalid duration'})
            else:
                ready.append(ReadySegmentAudio(
                    segment_key=segment_key,
                    audio_storage_path=row.audio_storage_path,
                    audio_duration_seconds=row.audio_duration_seconds,
                ))

        if missing or not_ready:
            raise SegmentsNotReadyError(episode_date, missing, not_ready)
        return ready

    async def _download_all(self, segments: Sequence[ReadySegmentAudio]) -> List[bytes]:
        """Download segment audio concurrently, in segment order; one failure cancels the rest."""
        tasks = [
            asyncio.ensure_future(self.blob_store.download(segment.audio_storage_path))
            for segment in segments
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def stitch_episode(self, episode_date: str) -> StitchResult:
        audio_log.log_event(audio_log.STITCH_STARTED, episode_date=episode_date, program=self.program)
        try:
            segments = await self.load_ready_segments(episode_date)

            buffers = await self._download_all(segments)

            stitched = await self.audio_tools.concat(buffers)
            duration = await self.audio_tools.probe_duration(stitched)

            storage_path = self.episode_path(episode_date)
            await self.blob_store.upload(storage_path, stitched, 'audio/mpeg')
        except Exception as exc:
            audio_log.log_event(
                audio_log.STITCH_FAILED,
                level=logging.ERROR,
                episode_date=episode_date,
                error_code=type(exc).__name__,
                error_message=str(exc),
            )
            raise

        audio_log.log_event(
            audio_log.STITCH_SUCCEEDED,
            episode_date=episode_date,
            duration_seconds=round(duration, 2),
            storage_path=storage_path,
        )
        return StitchResult(storage_path=storage_path, duration_seconds=duration)


class StitchWorker:
    """Stitches episodes whose segments are all ready but which have no artifact yet."""

    def __init__(self, stitcher: Stitcher, scan_limit: int = STITCH_SCAN_LIMIT):
        self.stitcher = stitcher
        self.scan_limit = scan_limit

    async def run_once(self, limit: int = 1, scan_limit: Optional[int] = None) -> StitchSweepSummary:
        summary = StitchSweepSummary()
        dates = await self.stitcher.lease_store.list_ready_episode_dates(
            self.stitcher.program,
            self.stitcher.required_segments,
        )
        if not dates:
            logger.info('No episodes with all segments ready')
            return summary

        # Scan past already-stitched dates so a done prefix doesn't hide work.
        for episode_date in dates[:scan_limit or self.scan_limit]:
            if len(summary.stitched) >= limit:
                break
            if await self.stitcher.blob_store.exists(self.stitcher.episode_path(episode_date)):
                summary.skipped.append(episode_date)
                continue
            try:
                await self.stitcher.stitch_episode(episode_date)
            except Exception as exc:
                logger.error('Failed to stitch %s: %s', episode_date, exc)
                summary.failed.append(episode_date)
                continue
            summary.stitched.append(episode_date)

        logger.info(
            'Stitch sweep: %d stitched, %d already stitched, %d failed',
            len(summary.stitched), len(summary.skipped), len(summary.failed),
        )
        return summary


async def run_daily_stitch(
    batch_runs: BatchRunStore,
    stitch_worker: StitchWorker,
    run_date: str,
    triggered_by: str = 'cron',
    limit: int = 1,
    external_job_id: Optional[str] = None,
):
    """
    Run the stitch sweep under the daily batch run lease.

    Returns:
        (run_id, StitchSweepSummary), or None when another run holds or
        already completed the window
    """
    kind = BatchRunKind.daily_stitch.value
    stale = await batch_runs.fail_stale(kind)
    if stale:
        logger.info('Failed %d stale daily stitch run(s)', stale)

    program = stitch_worker.stitcher.program
    handle = await batch_runs.claim(BatchRunClaimRequest(
        program=program,
        start_date=run_date,
        window_days=1,
        kind=kind,
        triggered_by=triggered_by,
        external_job_id=external_job_id,
    ))
    if handle is None:
        logger.info('Daily stitch for %s not claimed (in progress or completed)', run_date)
        return None

    try:
        summary = await stitch_worker.run_once(limit=limit)
    except Exception as exc:
        await batch_runs.fail(handle, str(exc), output_payload={'start_date': run_date})
        raise

    payload = {
        'start_date': run_date,
        'stitched': summary.stitched,
        'skipped': summary.skipped,
        'failed': summary.failed,
    }
    try:
        if summary.failed:
            await batch_runs.fail(
                handle,
                f'Failed to stitch {", ".join(summary.failed)}',
                output_payload=payload,
            )
        else:
            await batch_runs.complete(
                handle,
                output_payload=payload,
                notes=f'Stitched {len(summary.stitched)} episode(s)',
            )
    except StaleLeaseError:
        logger.warning('Daily stitch run %s was reclaimed before it finished; result not recorded', handle.id)
    return handle.id, summary
