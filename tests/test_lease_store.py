"""
Segment lease store tests.

Covers arming, exclusive claims, lease-checked commits, backoff and the
stale lease reclaimer.
"""
import asyncio

import pytest
from sqlalchemy import select

from episode_audio.errors import LeaseConflictError, StaleLeaseError
from episode_audio.models import Segment, AudioStatus
from episode_audio.schemas.lease import ClaimRequest, MarkReadyRequest, MarkFailedRequest
from episode_audio.services.lease_store import SegmentLeaseStore
from episode_audio.services.paths import build_job_key

from tests.fakes import VOICE_ID, MODEL_ID


def claim_request(segment) -> ClaimRequest:
    return ClaimRequest(episode_id=segment.episode_id, segment_key=segment.segment_key, job_key=segment.job_key)


class TestMarkPending:
    """Tests for arming segments."""

    @pytest.mark.asyncio
    async def test_creates_pending_row_with_job_key(self, lease_store, make_script):
        """Test a new segment is stored pending with its fingerprint."""
        segment = await lease_store.mark_pending(make_script('intro'))

        assert segment.audio_status == AudioStatus.pending.value
        assert segment.attempt_count == 0
        assert segment.job_key == build_job_key('ep-2025-01-06', 'intro', 1, VOICE_ID, MODEL_ID)

    @pytest.mark.asyncio
    async def test_default_voice_and_model_fill_gaps(self, session_factory, clock, make_script):
        """Test configured defaults are used when the script omits voice and model."""
        store = SegmentLeaseStore(session_factory, clock=clock, default_voice_id='v1', default_model_id='m1')
        segment = await store.mark_pending(make_script('intro', tts_voice_id=None, tts_model_id=None))

        assert segment.tts_voice_id == 'v1'
        assert segment.tts_model_id == 'm1'
        assert segment.job_key.endswith('::v1::m1')

    @pytest.mark.asyncio
    async def test_missing_voice_leaves_job_key_empty(self, lease_store, make_script):
        """Test a segment without voice config has no job key."""
        segment = await lease_store.mark_pending(make_script('intro', tts_voice_id=None))

        assert segment.job_key is None
        assert segment.audio_status == AudioStatus.pending.value

    @pytest.mark.asyncio
    async def test_rearming_failed_segment_resets_cycle(self, lease_store, make_script):
        """Test re-arming clears the attempt count and previous error."""
        segment = await lease_store.mark_pending(make_script('intro'))
        handle = await lease_store.claim(claim_request(segment))
        await lease_store.mark_failed(handle, MarkFailedRequest(error_class='qa_failure', error_message='qa_empty: x'))

        rearmed = await lease_store.mark_pending(make_script('intro', script_version=2))

        assert rearmed.audio_status == AudioStatus.pending.value
        assert rearmed.attempt_count == 0
        assert rearmed.last_error_class is None
        assert rearmed.script_version == 2
        assert '::2::' in rearmed.job_key

    @pytest.mark.asyncio
    async def test_rearming_ready_segment_clears_audio(self, lease_store, make_ready, make_script):
        """Test re-arming a ready segment clears the stored artifact fields."""
        await make_ready('intro')

        rearmed = await lease_store.mark_pending(make_script('intro'))

        assert rearmed.audio_status == AudioStatus.pending.value
        assert rearmed.audio_storage_path is None
        assert rearmed.audio_duration_seconds is None

    @pytest.mark.asyncio
    async def test_rearming_generating_segment_conflicts(self, lease_store, make_script):
        """Test a segment in flight cannot be re-armed."""
        segment = await lease_store.mark_pending(make_script('intro'))
        await lease_store.claim(claim_request(segment))

        with pytest.raises(LeaseConflictError):
            await lease_store.mark_pending(make_script('intro'))

    @pytest.mark.asyncio
    async def test_rows_are_never_duplicated(self, lease_store, make_script, test_session):
        """Test re-arming updates the existing row in place."""
        await lease_store.mark_pending(make_script('intro'))
        await lease_store.mark_pending(make_script('intro'))

        result = await test_session.execute(select(Segment).where(Segment.segment_key == 'intro'))
        assert len(result.scalars().all()) == 1


class TestClaim:
    """Tests for the exclusive claim."""

    @pytest.mark.asyncio
    async def test_claim_moves_to_generating(self, lease_store, make_script, clock):
        """Test a claim increments attempts and stamps the lease."""
        segment = await lease_store.mark_pending(make_script('intro'))

        handle = await lease_store.claim(claim_request(segment))

        assert handle is not None
        assert handle.attempt == 1
        assert handle.claimed_at == clock.now
        stored = await lease_store.get(segment.episode_id, 'intro')
        assert stored.audio_status == AudioStatus.generating.value
        assert stored.attempt_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, lease_store, make_script):
        """Test two racing claims on the same row produce exactly one handle."""
        segment = await lease_store.mark_pending(make_script('intro'))
        request = claim_request(segment)

        results = await asyncio.gather(
            lease_store.claim(request),
            lease_store.claim(request),
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        stored = await lease_store.get(segment.episode_id, 'intro')
        assert stored.attempt_count == 1

    @pytest.mark.asyncio
    async def test_second_claim_returns_none(self, lease_store, make_script):
        """Test a held lease cannot be claimed again before it goes stale."""
        segment = await lease_store.mark_pending(make_script('intro'))
        await lease_store.claim(claim_request(segment))

        assert await lease_store.claim(claim_request(segment)) is None

    @pytest.mark.asyncio
    async def test_mismatched_job_key_is_refused(self, lease_store, make_script):
        """Test a claim for an outdated fingerprint returns None."""
        segment = await lease_store.mark_pending(make_script('intro'))
        stale = ClaimRequest(episode_id=segment.episode_id, segment_key='intro', job_key='old::key')

        assert await lease_store.claim(stale) is None

    @pytest.mark.asyncio
    async def test_ready_segment_is_not_claimable(self, lease_store, make_ready):
        """Test a ready segment is never claimed."""
        segment = await make_ready('intro')

        assert await lease_store.claim(claim_request(segment)) is None


class TestCommit:
    """Tests for lease-checked transitions."""

    @pytest.mark.asyncio
    async def test_mark_ready_stores_artifact(self, lease_store, make_script):
        """Test committing a ready segment records path, duration and checksum."""
        segment = await lease_store.mark_pending(make_script('intro'))
        handle = await lease_store.claim(claim_request(segment))

        await lease_store.mark_ready(handle, MarkReadyRequest(
            audio_storage_path='segments/2025-01-06/intro/v1/x.mp3',
            audio_duration_seconds=42.5,
            checksum_sha256='a' * 64,
            codec='mp3',
        ))

        stored = await lease_store.get(segment.episode_id, 'intro')
        assert stored.audio_status == AudioStatus.ready.value
        assert stored.audio_storage_path == 'segments/2025-01-06/intro/v1/x.mp3'
        assert stored.audio_duration_seconds == 42.5
        assert stored.audio_checksum_sha256 == 'a' * 64
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_message(self, lease_store, make_script):
        """Test failures keep class and a bounded message."""
        segment = await lease_store.mark_pending(make_script('intro'))
        handle = await lease_store.claim(claim_request(segment))

        await lease_store.mark_failed(handle, MarkFailedRequest(error_class='worker_error', error_message='x' * 5000))

        stored = await lease_store.get(segment.episode_id, 'intro')
        assert stored.audio_status == AudioStatus.failed.value
        assert stored.last_error_class == 'worker_error'
        assert len(stored.last_error_message) == 2000

    @pytest.mark.asyncio
    async def test_commit_after_rearm_is_rejected(self, lease_store, make_script):
        """Test a handle from a superseded cycle cannot commit."""
        segment = await lease_store.mark_pending(make_script('intro'))
        handle = await lease_store.claim(claim_request(segment))
        await lease_store.mark_failed(handle, MarkFailedRequest(error_class='timeout'))
        await lease_store.mark_pending(make_script('intro'))

        with pytest.raises(StaleLeaseError):
            await lease_store.mark_ready(handle, MarkReadyRequest(
                audio_storage_path='p.mp3',
                audio_duration_seconds=10,
            ))

    @pytest.mark.asyncio
    async def test_schedule_retry_sets_backoff(self, lease_store, make_script, clock):
        """Test a scheduled retry is claimable only after the backoff."""
        segment = await lease_store.mark_pending(make_script('intro'))
        handle = await lease_store.claim(claim_request(segment))
        await lease_store.mark_failed(handle, MarkFailedRequest(error_class='timeout'))

        await lease_store.schedule_retry(handle, 30_000)

        assert await lease_store.list_claimable(10) == []
        assert await lease_store.claim(claim_request(segment)) is None

        clock.advance(seconds=30)
        assert len(await lease_store.list_claimable(10)) == 1
        retry = await lease_store.claim(claim_request(segment))
        assert retry.attempt == 2

    @pytest.mark.asyncio
    async def test_reject_unclaimed_consumes_no_attempt(self, lease_store, make_script):
        """Test rejecting a pending segment leaves attempt_count unchanged."""
        await lease_store.mark_pending(make_script('intro', tts_voice_id=None))

        rejected = await lease_store.reject_unclaimed('ep-2025-01-06', 'intro', 'missing_config', 'no voice')

        assert rejected is True
        stored = await lease_store.get('ep-2025-01-06', 'intro')
        assert stored.audio_status == AudioStatus.failed.value
        assert stored.attempt_count == 0
        assert stored.last_error_class == 'missing_config'


class TestStaleReclaim:
    """Tests for reclaiming expired leases."""

    @pytest.mark.asyncio
    async def test_lease_is_live_before_ttl(self, lease_store, make_script, clock):
        """Test a lease claimed 14 minutes ago is left alone."""
        segment = await lease_store.mark_pending(make_script('intro'))
        await lease_store.claim(claim_request(segment))

        clock.advance(minutes=14)

        assert await lease_store.requeue_stale() == 0
        assert await lease_store.claim(claim_request(segment)) is None

    @pytest.mark.asyncio
    async def test_lease_is_reclaimed_after_ttl(self, lease_store, make_script, clock):
        """Test a lease claimed 16 minutes ago returns to pending."""
        segment = await lease_store.mark_pending(make_script('intro'))
        await lease_store.claim(claim_request(segment))

        clock.advance(minutes=16)

        assert await lease_store.requeue_stale() == 1
        stored = await lease_store.get(segment.episode_id, 'intro')
        assert stored.audio_status == AudioStatus.pending.value
        assert stored.last_error_class == 'lease_expired'

        handle = await lease_store.claim(claim_request(segment))
        assert handle.attempt == 2

    @pytest.mark.asyncio
    async def test_stale_generating_row_is_directly_claimable(self, lease_store, make_script, clock):
        """Test an expired lease can be taken over without the reclaimer."""
        segment = await lease_store.mark_pending(make_script('intro'))
        first = await lease_store.claim(claim_request(segment))

        clock.advance(minutes=16)
        second = await lease_store.claim(claim_request(segment))

        assert second.attempt == 2
        with pytest.raises(StaleLeaseError):
            await lease_store.mark_ready(first, MarkReadyRequest(audio_storage_path='p.mp3', audio_duration_seconds=12))

    @pytest.mark.asyncio
    async def test_reclaim_at_attempt_ceiling_parks_as_failed(self, session_factory, clock, make_script):
        """Test an expired lease on its last attempt is failed, not requeued."""
        store = SegmentLeaseStore(session_factory, clock=clock, max_attempts=1)
        segment = await store.mark_pending(make_script('intro'))
        await store.claim(claim_request(segment))

        clock.advance(minutes=16)

        assert await store.requeue_stale() == 1
        stored = await store.get(segment.episode_id, 'intro')
        assert stored.audio_status == AudioStatus.failed.value
        assert stored.last_error_class == 'lease_expired'


class TestQueries:
    """Tests for read helpers."""

    @pytest.mark.asyncio
    async def test_list_ready_episode_dates(self, lease_store, make_ready):
        """Test only dates with every required segment ready are listed."""
        for key in ('intro', 'main_themes', 'closing'):
            await make_ready(key)
        await make_ready('intro', episode_id='ep-2025-01-07', episode_date='2025-01-07')

        dates = await lease_store.list_ready_episode_dates('daily-brief', ('intro', 'main_themes', 'closing'))

        assert dates == ['2025-01-06']

    @pytest.mark.asyncio
    async def test_get_episode_segments_filters_keys(self, lease_store, make_script):
        """Test episode lookup is keyed by segment key."""
        await lease_store.mark_pending(make_script('intro'))
        await lease_store.mark_pending(make_script('closing'))

        rows = await lease_store.get_episode_segments('ep-2025-01-06', ['intro'])

        assert list(rows) == ['intro']
