"""
Lease store for segment audio jobs and batch runs.

Every transition is a single conditional UPDATE whose WHERE clause encodes
the eligible source states, and whose rowcount tells the caller whether it
won. Two workers polling the same row can never both claim it: the loser's
UPDATE matches zero rows once the winner has committed.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from episode_audio.config import (
    SEGMENT_LEASE_TTL_MINUTES,
    BATCH_RUN_TTL_MINUTES,
    MAX_ATTEMPTS,
    TTS_VOICE_ID,
    TTS_MODEL_ID,
)
from episode_audio.errors import LeaseConflictError, StaleLeaseError
from episode_audio.models import Segment, AudioStatus, BatchRun, BatchRunStatus, utcnow
from episode_audio.schemas.lease import (
    ClaimRequest,
    LeaseHandle,
    MarkReadyRequest,
    MarkFailedRequest,
    BatchRunClaimRequest,
    BatchRunHandle,
)
from episode_audio.schemas.segment import SegmentScript
from episode_audio.services.paths import build_job_key
from episode_audio.services.retry_policy import LEASE_EXPIRED

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 2000

Clock = Callable[[], datetime]

_REARMABLE = (AudioStatus.pending.value, AudioStatus.ready.value, AudioStatus.failed.value)


class SegmentLeaseStore:
    """
    Claim/commit/fail protocol for segment audio jobs.

    Args:
        session_factory: async_sessionmaker bound to the lease database
        clock: Returns naive UTC now; injectable for TTL tests
        lease_ttl: Age after which a generating lease is stale
        max_attempts: Attempt ceiling per cycle
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock = utcnow,
        lease_ttl: timedelta = timedelta(minutes=SEGMENT_LEASE_TTL_MINUTES),
        max_attempts: int = MAX_ATTEMPTS,
        default_voice_id: Optional[str] = TTS_VOICE_ID,
        default_model_id: Optional[str] = TTS_MODEL_ID,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.lease_ttl = lease_ttl
        self.max_attempts = max_attempts
        self.default_voice_id = default_voice_id
        self.default_model_id = default_model_id

    @staticmethod
    def _row(episode_id: str, segment_key: str):
        return and_(Segment.episode_id == episode_id, Segment.segment_key == segment_key)

    @staticmethod
    def _held_by(handle: LeaseHandle, status: str = AudioStatus.generating.value):
        return and_(
            Segment.episode_id == handle.episode_id,
            Segment.segment_key == handle.segment_key,
            Segment.job_key == handle.job_key,
            Segment.attempt_count == handle.attempt,
            Segment.audio_status == status,
        )

    async def mark_pending(self, script: SegmentScript) -> Segment:
        """
        Arm (or re-arm) a segment for audio generation.

        Allowed from no audio state, pending, ready or failed. Re-arming
        starts a new cycle: attempts reset and previous results are cleared.

        Raises:
            LeaseConflictError: The segment is currently generating
        """
        voice_id = script.tts_voice_id or self.default_voice_id
        model_id = script.tts_model_id or self.default_model_id
        job_key = None
        if voice_id and model_id:
            job_key = build_job_key(script.episode_id, script.segment_key, script.script_version, voice_id, model_id)

        now = self._clock()
        values = dict(
            episode_date=script.episode_date,
            program=script.program,
            script_version=script.script_version,
            script_text=script.script_text,
            tts_voice_id=voice_id,
            tts_model_id=model_id,
            gate_decision=script.gate_decision,
            blocking_reasons=list(script.blocking_reasons),
            audio_status=AudioStatus.pending.value,
            attempt_count=0,
            job_key=job_key,
            claimed_at=None,
            next_attempt_at=None,
            audio_storage_path=None,
            audio_duration_seconds=None,
            audio_checksum_sha256=None,
            audio_codec=None,
            last_error_class=None,
            last_error_message=None,
            completed_at=None,
            updated_at=now,
        )

        async with self._session_factory() as session:
            result = await session.execute(
                update(Segment)
                .where(
                    self._row(script.episode_id, script.segment_key),
                    or_(Segment.audio_status.is_(None), Segment.audio_status.in_(_REARMABLE)),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                existing = await session.scalar(
                    select(Segment.audio_status).where(self._row(script.episode_id, script.segment_key))
                )
                if existing is not None:
                    await session.rollback()
                    raise LeaseConflictError(
                        f'Segment {script.episode_id}/{script.segment_key} is {existing}; cannot re-arm'
                    )
                session.add(Segment(
                    episode_id=script.episode_id,
                    segment_key=script.segment_key,
                    created_at=now,
                    **values,
                ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise LeaseConflictError(
                    f'Segment {script.episode_id}/{script.segment_key} was armed concurrently'
                ) from None

        logger.info('Segment %s/%s pending (job_key=%s)', script.episode_id, script.segment_key, job_key)
        return await self.get(script.episode_id, script.segment_key)

    async def claim(self, request: ClaimRequest) -> Optional[LeaseHandle]:
        """
        Atomically take the lease on a segment.

        Eligible rows are pending and due, or generating with a lease older
        than the TTL. The stored job_key must match the caller's fingerprint.

        Returns:
            LeaseHandle with the new attempt number, or None if the row was
            already taken, re-armed, or not due
        """
        now = self._clock()
        eligible = or_(
            and_(
                Segment.audio_status == AudioStatus.pending.value,
                or_(Segment.next_attempt_at.is_(None), Segment.next_attempt_at <= now),
            ),
            and_(
                Segment.audio_status == AudioStatus.generating.value,
                Segment.claimed_at < now - self.lease_ttl,
                Segment.attempt_count < self.max_attempts,
            ),
        )

        async with self._session_factory() as session:
            result = await session.execute(
                update(Segment)
                .where(
                    self._row(request.episode_id, request.segment_key),
                    Segment.job_key == request.job_key,
                    eligible,
                )
                .values(
                    audio_status=AudioStatus.generating.value,
                    attempt_count=Segment.attempt_count + 1,
                    claimed_at=now,
                    next_attempt_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None

            attempt = await session.scalar(
                select(Segment.attempt_count).where(self._row(request.episode_id, request.segment_key))
            )
            await session.commit()

        return LeaseHandle(
            episode_id=request.episode_id,
            segment_key=request.segment_key,
            job_key=request.job_key,
            attempt=attempt,
            claimed_at=now,
        )

    async def mark_ready(self, handle: LeaseHandle, request: MarkReadyRequest):
        """
        Commit a generated segment.

        Raises:
            StaleLeaseError: The lease is no longer held by this handle
        """
        now = self._clock()
        await self._transition(
            handle,
            self._held_by(handle),
            audio_status=AudioStatus.ready.value,
            audio_storage_path=request.audio_storage_path,
            audio_duration_seconds=request.audio_duration_seconds,
            audio_checksum_sha256=request.checksum_sha256,
            audio_codec=request.codec,
            last_error_class=None,
            last_error_message=None,
            completed_at=now,
            updated_at=now,
        )

    async def mark_failed(self, handle: LeaseHandle, request: MarkFailedRequest):
        """
        Record a classified failure for the held lease.

        Raises:
            StaleLeaseError: The lease is no longer held by this handle
        """
        now = self._clock()
        await self._transition(
            handle,
            self._held_by(handle),
            audio_status=AudioStatus.failed.value,
            last_error_class=request.error_class,
            last_error_message=request.error_message[:ERROR_MESSAGE_LIMIT],
            completed_at=now,
            updated_at=now,
        )

    async def schedule_retry(self, handle: LeaseHandle, backoff_ms: int):
        """Return a failed attempt to pending, claimable once the backoff elapses."""
        now = self._clock()
        await self._transition(
            handle,
            self._held_by(handle, status=AudioStatus.failed.value),
            audio_status=AudioStatus.pending.value,
            next_attempt_at=now + timedelta(milliseconds=backoff_ms),
            completed_at=None,
            updated_at=now,
        )

    async def _transition(self, handle: LeaseHandle, condition, **values):
        async with self._session_factory() as session:
            result = await session.execute(
                update(Segment)
                .where(condition)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise StaleLeaseError(
                    f'Lease on {handle.episode_id}/{handle.segment_key} attempt {handle.attempt} is no longer held'
                )
            await session.commit()

    async def reject_unclaimed(self, episode_id: str, segment_key: str, error_class: str, message: str) -> bool:
        """
        Fail a pending segment without claiming it or consuming an attempt.

        Returns:
            True if the row was still pending and is now failed
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Segment)
                .where(
                    self._row(episode_id, segment_key),
                    Segment.audio_status == AudioStatus.pending.value,
                )
                .values(
                    audio_status=AudioStatus.failed.value,
                    last_error_class=error_class,
                    last_error_message=message[:ERROR_MESSAGE_LIMIT],
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def requeue_stale(self, ttl: Optional[timedelta] = None) -> int:
        """
        Force generating leases older than ttl back to a claimable state.

        Rows below the attempt ceiling return to pending; rows at the ceiling
        are parked as failed with ``lease_expired`` for manual review.

        Returns:
            Number of rows reclaimed
        """
        now = self._clock()
        ttl = ttl if ttl is not None else self.lease_ttl
        stale = and_(
            Segment.audio_status == AudioStatus.generating.value,
            Segment.claimed_at < now - ttl,
        )
        message = f'Lease expired after {ttl.total_seconds() / 60:.0f} minutes'

        async with self._session_factory() as session:
            requeued = await session.execute(
                update(Segment)
                .where(stale, Segment.attempt_count < self.max_attempts)
                .values(
                    audio_status=AudioStatus.pending.value,
                    last_error_class=LEASE_EXPIRED,
                    last_error_message=message,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            parked = await session.execute(
                update(Segment)
                .where(stale, Segment.attempt_count >= self.max_attempts)
                .values(
                    audio_status=AudioStatus.failed.value,
                    last_error_class=LEASE_EXPIRED,
                    last_error_message=message,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        count = requeued.rowcount + parked.rowcount
        if count:
            logger.warning('Reclaimed %d stale segment lease(s) (%d parked)', count, parked.rowcount)
        return count

    async def get(self, episode_id: str, segment_key: str) -> Optional[Segment]:
        async with self._session_factory() as session:
            return await session.scalar(select(Segment).where(self._row(episode_id, segment_key)))

    async def list_claimable(self, limit: int) -> List[Segment]:
        """Pending segments that are due, oldest episode first."""
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Segment)
                .where(
                    Segment.audio_status == AudioStatus.pending.value,
                    or_(Segment.next_attempt_at.is_(None), Segment.next_attempt_at <= now),
                )
                .order_by(Segment.episode_date.asc(), Segment.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_episode_segments(
        self,
        episode_id: str,
        segment_keys: Optional[Sequence[str]] = None,
    ) -> Dict[str, Segment]:
        stmt = select(Segment).where(Segment.episode_id == episode_id)
        if segment_keys is not None:
            stmt = stmt.where(Segment.segment_key.in_(list(segment_keys)))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row.segment_key: row for row in result.scalars().all()}

    async def get_segments_for_date(
        self,
        program: str,
        episode_date: str,
        segment_keys: Sequence[str],
    ) -> Dict[str, Segment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Segment).where(
                    Segment.program == program,
                    Segment.episode_date == episode_date,
                    Segment.segment_key.in_(list(segment_keys)),
                )
            )
            return {row.segment_key: row for row in result.scalars().all()}

    async def list_ready_episode_dates(self, program: str, segment_keys: Sequence[str]) -> List[str]:
        """Episode dates whose required segments are all ready, oldest first."""
        keys = list(segment_keys)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Segment.episode_date)
                .where(
                    Segment.program == program,
                    Segment.segment_key.in_(keys),
                    Segment.audio_status == AudioStatus.ready.value,
                    Segment.audio_storage_path.is_not(None),
                )
                .group_by(Segment.episode_date)
                .having(func.count(func.distinct(Segment.segment_key)) == len(keys))
                .order_by(Segment.episode_date.asc())
            )
            return list(result.scalars().all())


class BatchRunStore:
    """
    Mutual-exclusion lease for scheduled batch runs.

    A window that completed is never claimed again; a failed window, or one
    whose running lease outlived its kind's TTL, may be claimed anew.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock = utcnow,
        ttl_minutes: Optional[Dict[str, int]] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.ttl_minutes = dict(ttl_minutes or BATCH_RUN_TTL_MINUTES)

    def _ttl(self, kind: str) -> timedelta:
        return timedelta(minutes=self.ttl_minutes[kind])

    async def claim(self, request: BatchRunClaimRequest) -> Optional[BatchRunHandle]:
        """
        Claim the run for a work window.

        Returns:
            BatchRunHandle, or None if another run holds or completed the window
        """
        now = self._clock()
        token = str(uuid.uuid4())
        window = and_(
            BatchRun.program == request.program,
            BatchRun.start_date == request.start_date,
            BatchRun.window_days == request.window_days,
            BatchRun.kind == request.kind,
        )
        reclaimable = or_(
            BatchRun.status == BatchRunStatus.failed.value,
            and_(
                BatchRun.status == BatchRunStatus.running.value,
                BatchRun.claimed_at < now - self._ttl(request.kind),
            ),
        )

        async with self._session_factory() as session:
            result = await session.execute(
                update(BatchRun)
                .where(window, reclaimable)
                .values(
                    status=BatchRunStatus.running.value,
                    triggered_by=request.triggered_by,
                    external_job_id=request.external_job_id,
                    claimed_at=now,
                    claim_token=token,
                    completed_at=None,
                    output_payload=None,
                    error_message=None,
                    notes=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                run = await session.scalar(select(BatchRun).where(window))
                await session.commit()
                return BatchRunHandle.model_validate(run)

            existing = await session.scalar(select(BatchRun.status).where(window))
            if existing is not None:
                await session.rollback()
                logger.info('Batch run %s %s/%s not claimed (status=%s)',
                            request.kind, request.program, request.start_date, existing)
                return None

            run = BatchRun(
                program=request.program,
                start_date=request.start_date,
                window_days=request.window_days,
                kind=request.kind,
                status=BatchRunStatus.running.value,
                triggered_by=request.triggered_by,
                external_job_id=request.external_job_id,
                claimed_at=now,
                claim_token=token,
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            return BatchRunHandle.model_validate(run)

    async def complete(
        self,
        handle: BatchRunHandle,
        output_payload: Optional[dict] = None,
        notes: Optional[str] = None,
    ):
        await self._finish(handle, BatchRunStatus.completed, output_payload=output_payload, notes=notes)

    async def fail(
        self,
        handle: BatchRunHandle,
        error_message: str,
        output_payload: Optional[dict] = None,
        notes: Optional[str] = None,
    ):
        await self._finish(
            handle,
            BatchRunStatus.failed,
            error_message=error_message[:ERROR_MESSAGE_LIMIT],
            output_payload=output_payload,
            notes=notes,
        )

    async def _finish(self, handle: BatchRunHandle, status: BatchRunStatus, **values):
        """
        Move the run out of running for the holder of handle.

        Raises:
            StaleLeaseError: The run finished, or was reclaimed by a newer claim
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(BatchRun)
                .where(
                    BatchRun.id == handle.id,
                    BatchRun.claim_token == handle.claim_token,
                    BatchRun.status == BatchRunStatus.running.value,
                )
                .values(status=status.value, completed_at=self._clock(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise StaleLeaseError(f'Batch run {handle.id} is no longer held by this claim')
            await session.commit()

    async def fail_stale(self, kind: str, ttl: Optional[timedelta] = None) -> int:
        """Fail running batch runs of a kind whose lease outlived ttl."""
        now = self._clock()
        ttl = ttl if ttl is not None else self._ttl(kind)
        async with self._session_factory() as session:
            result = await session.execute(
                update(BatchRun)
                .where(
                    BatchRun.kind == kind,
                    BatchRun.status == BatchRunStatus.running.value,
                    BatchRun.claimed_at < now - ttl,
                )
                .values(
                    status=BatchRunStatus.failed.value,
                    completed_at=now,
                    error_message=f'Timed out after {ttl.total_seconds() / 60:.0f} minutes',
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount:
            logger.warning('Failed %d stale %s batch run(s)', result.rowcount, kind)
        return result.rowcount

    async def get(self, run_id: str) -> Optional[BatchRun]:
        async with self._session_factory() as session:
            return await session.scalar(select(BatchRun).where(BatchRun.id == run_id))
