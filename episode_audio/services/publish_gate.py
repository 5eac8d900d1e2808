"""
Publish readiness gate.

Raises with the complete punch list so one call tells the operator
everything that stands between the episode and publication.
"""
import asyncio
import logging
from typing import Optional, Sequence

from episode_audio.config import REQUIRED_SEGMENTS, ARTIFACT_PROBE_TIMEOUT
from episode_audio.errors import EpisodeNotPublishableError
from episode_audio.models import AudioStatus
from episode_audio.services.blob_store import BlobStore
from episode_audio.services.lease_store import SegmentLeaseStore
from episode_audio.services.paths import build_episode_audio_path

logger = logging.getLogger(__name__)

APPROVED = 'approve'


class PublishReadinessGate:

    def __init__(
        self,
        lease_store: SegmentLeaseStore,
        blob_store: BlobStore,
        probe_timeout: float = ARTIFACT_PROBE_TIMEOUT,
    ):
        self.lease_store = lease_store
        self.blob_store = blob_store
        self.probe_timeout = probe_timeout

    async def _artifact_exists(self, path: str) -> bool:
        try:
            return await asyncio.wait_for(self.blob_store.exists(path), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning('Existence probe for %s timed out after %.1fs', path, self.probe_timeout)
            return False

    async def assert_publishable(
        self,
        episode_id: str,
        required_segments: Optional[Sequence[str]] = None,
    ):
        """
        Return None when the episode may be published, else raise.

        Raises:
            ValueError: required_segments is empty
            EpisodeNotPublishableError: Any segment missing or blocked, rows
                disagreeing on program or date, or the stitched artifact absent
        """
        keys = list(REQUIRED_SEGMENTS if required_segments is None else required_segments)
        if not keys:
            raise ValueError('required_segments cannot be empty')

        rows = await self.lease_store.get_episode_segments(episode_id, keys)

        missing = []
        blocked = []
        for segment_key in keys:
            row = rows.get(segment_key)
            if row is None:
                missing.append(segment_key)
                continue
            if (
                row.gate_decision != APPROVED
                or row.audio_status != AudioStatus.ready.value
                or not row.audio_storage_path
            ):
                blocked.append({
                    'segment_key': segment_key,
                    'gate_decision': row.gate_decision,
                    'audio_status': row.audio_status,
                    'blocking_reasons': list(row.blocking_reasons or []),
                })

        # The artifact path is only known when every row names the same program and date.
        locations = {(row.program, row.episode_date) for row in rows.values()}
        mismatched = []
        if len(locations) > 1:
            mismatched = [
                {'segment_key': key, 'program': rows[key].program, 'episode_date': rows[key].episode_date}
                for key in keys if key in rows
            ]

        artifact_path = None
        artifact_missing = True
        if len(locations) == 1:
            program, episode_date = next(iter(locations))
            artifact_path = build_episode_audio_path(program, episode_date)
            artifact_missing = not await self._artifact_exists(artifact_path)

        if missing or blocked or mismatched or artifact_missing:
            raise EpisodeNotPublishableError(
                episode_id,
                missing=missing,
                blocked=blocked,
                artifact_path=artifact_path,
                artifact_missing=artifact_missing,
                mismatched=mismatched,
            )
