"""
Background worker that turns pending segments into ready audio.

Each poll cycle reclaims stale leases, then claims and processes due
segments one at a time: script check, synthesis, quality gate, upload,
commit. A failure is recorded on the segment before any retry decision, and
never stops the loop.
"""
import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from episode_audio.config import (
    WORKER_POLL_SECONDS,
    WORKER_BATCH_LIMIT,
    WORKER_DISABLED,
    SEGMENT_LEASE_TTL_MINUTES,
)
from episode_audio.errors import QaFailure, StaleLeaseError
from episode_audio.models import Segment
from episode_audio.schemas.lease import ClaimRequest, LeaseHandle, MarkReadyRequest, MarkFailedRequest
from episode_audio.services import audio_log
from episode_audio.services.audio_qa import QualityGate
from episode_audio.services.blob_store import BlobStore
from episode_audio.services.lease_store import SegmentLeaseStore
from episode_audio.services.paths import build_job_key, build_segment_audio_path
from episode_audio.services.retry_policy import MISSING_CONFIG, classify_error, decide_retry
from episode_audio.services.synthesis import Synthesizer

logger = logging.getLogger(__name__)

# Outcomes of processing one segment
READY = 'ready'
FAILED = 'failed'
RETRY_SCHEDULED = 'retry_scheduled'
SKIPPED = 'skipped'
REJECTED = 'rejected'


@dataclass
class WorkerTickSummary:
    reclaimed: int = 0
    ready: int = 0
    failed: int = 0
    retry_scheduled: int = 0
    skipped: int = 0
    rejected: int = 0

    def record(self, outcome: str):
        setattr(self, outcome, getattr(self, outcome) + 1)


class AudioWorker:
    """
    Poll loop over the segment lease store.

    Runs as an asyncio task between start() and stop(). Safety across
    processes comes only from the lease store's conditional claim.
    """

    def __init__(
        self,
        lease_store: SegmentLeaseStore,
        synthesizer: Synthesizer,
        quality_gate: QualityGate,
        blob_store: BlobStore,
        poll_interval: float = WORKER_POLL_SECONDS,
        batch_limit: int = WORKER_BATCH_LIMIT,
        stale_ttl: timedelta = timedelta(minutes=SEGMENT_LEASE_TTL_MINUTES),
        disabled: bool = WORKER_DISABLED,
    ):
        self.lease_store = lease_store
        self.synthesizer = synthesizer
        self.quality_gate = quality_gate
        self.blob_store = blob_store
        self.poll_interval = poll_interval
        self.batch_limit = batch_limit
        self.stale_ttl = stale_ttl
        self.disabled = disabled
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the background poll loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self, timeout: float = 5.0):
        """
        Signal the loop to stop and wait for the current cycle to finish.

        A segment still in flight after the timeout is abandoned; its lease
        expires and the stale reclaimer returns it to the queue.
        """
        self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

    async def _poll_loop(self):
        logger.info('Audio worker started (poll=%.1fs, limit=%d)', self.poll_interval, self.batch_limit)
        while not self._stop_event.is_set():
            if self.disabled:
                logger.info('Audio worker disabled; idling')
            else:
                try:
                    await self.run_once()
                except Exception:
                    # Log but don't crash the loop
                    logger.exception('Audio worker cycle failed')

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
        logger.info('Audio worker stopped')

    async def run_once(self, limit: Optional[int] = None) -> WorkerTickSummary:
        """Run one poll cycle: reclaim stale leases, then process due segments."""
        summary = WorkerTickSummary()
        summary.reclaimed = await self.lease_store.requeue_stale(self.stale_ttl)

        segments = await self.lease_store.list_claimable(limit or self.batch_limit)
        if not segments:
            logger.debug('No pending segments')
            return summary

        for segment in segments:
            summary.record(await self.process_segment(segment))
        return summary

    async def process_segment(self, segment: Segment) -> str:
        """Claim and process one segment snapshot; returns the outcome."""
        episode_id = segment.episode_id
        segment_key = segment.segment_key

        if not segment.tts_voice_id or not segment.tts_model_id:
            message = f'missing_config: segment {episode_id}/{segment_key} has no voice or model'
            rejected = await self.lease_store.reject_unclaimed(episode_id, segment_key, MISSING_CONFIG, message)
            logger.warning('Segment %s/%s missing TTS config', episode_id, segment_key)
            return REJECTED if rejected else SKIPPED

        job_key = build_job_key(
            episode_id,
            segment_key,
            segment.script_version,
            segment.tts_voice_id,
            segment.tts_model_id,
        )
        if segment.job_key != job_key:
            logger.info('Skipping stale job for %s/%s', episode_id, segment_key)
            return SKIPPED

        handle = await self.lease_store.claim(
            ClaimRequest(episode_id=episode_id, segment_key=segment_key, job_key=job_key)
        )
        if handle is None:
            logger.info('Segment %s/%s already claimed or re-armed; skipping', episode_id, segment_key)
            return SKIPPED

        audio_log.log_event(
            audio_log.GENERATE_STARTED,
            episode_id=episode_id,
            segment_key=segment_key,
            script_version=segment.script_version,
            attempt=handle.attempt,
        )

        try:
            storage_path, duration = await self._generate(segment, handle)
        except Exception as exc:
            return await self._handle_failure(segment, handle, exc)

        audio_log.log_event(
            audio_log.GENERATE_SUCCEEDED,
            episode_id=episode_id,
            segment_key=segment_key,
            script_version=segment.script_version,
            attempt=handle.attempt,
            duration_seconds=round(duration, 2),
            storage_path=storage_path,
        )
        return READY

    async def _generate(self, segment: Segment, handle: LeaseHandle) -> tuple:
        """Synthesis, QA, upload and commit, strictly in that order."""
        verdict = self.quality_gate.check_script(segment.segment_key, segment.script_text)
        if not verdict.ok:
            raise QaFailure(verdict)

        audio = await self.synthesizer.synthesize(
            segment.script_text,
            segment.tts_voice_id,
            segment.tts_model_id,
        )

        report = await self.quality_gate.evaluate(segment.segment_key, audio)
        if not report.verdict.ok:
            raise QaFailure(report.verdict)

        storage_path = build_segment_audio_path(
            segment.episode_date,
            segment.segment_key,
            segment.script_version,
            handle.job_key,
        )
        await self.blob_store.upload(storage_path, audio, 'audio/mpeg')

        await self.lease_store.mark_ready(
            handle,
            MarkReadyRequest(
                audio_storage_path=storage_path,
                audio_duration_seconds=report.duration_seconds,
                checksum_sha256=hashlib.sha256(audio).hexdigest(),
                codec=getattr(self.synthesizer, 'codec', 'mp3'),
            ),
        )
        return storage_path, report.duration_seconds

    async def _handle_failure(self, segment: Segment, handle: LeaseHandle, exc: Exception) -> str:
        classification = classify_error(exc)
        episode_id = segment.episode_id
        segment_key = segment.segment_key

        audio_log.log_event(
            audio_log.GENERATE_FAILED,
            level=logging.ERROR,
            episode_id=episode_id,
            segment_key=segment_key,
            script_version=segment.script_version,
            attempt=handle.attempt,
            error_code=classification.error_class,
            error_message=classification.message,
        )

        try:
            await self.lease_store.mark_failed(
                handle,
                MarkFailedRequest(error_class=classification.error_class, error_message=classification.message),
            )
        except StaleLeaseError:
            logger.warning('Lease on %s/%s lost before failure was recorded', episode_id, segment_key)
            return SKIPPED
        except Exception:
            logger.exception('Could not record failure for %s/%s', episode_id, segment_key)
            return FAILED

        decision = decide_retry(handle.attempt, classification.error_class)
        if not decision.should_retry:
            return FAILED

        try:
            await self.lease_store.schedule_retry(handle, decision.backoff_ms)
        except StaleLeaseError:
            logger.warning('Segment %s/%s changed before retry could be scheduled', episode_id, segment_key)
            return FAILED

        logger.info(
            'Retry %d for %s/%s scheduled in %ds (%s)',
            handle.attempt + 1, episode_id, segment_key, decision.backoff_ms // 1000, classification.error_class,
        )
        return RETRY_SCHEDULED
