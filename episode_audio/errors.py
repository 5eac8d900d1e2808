"""
Exception taxonomy for the audio pipeline.
"""
from typing import List, Optional


class EpisodeAudioError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(EpisodeAudioError):
    """Required configuration (API key, voice, model) is missing."""


class LeaseConflictError(EpisodeAudioError):
    """A record cannot transition because another holder owns it."""


class StaleLeaseError(EpisodeAudioError):
    """A commit or failure was attempted with a lease that is no longer held."""


class SynthesisError(EpisodeAudioError):
    """The text-to-speech service returned an error or an empty payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AudioToolError(EpisodeAudioError):
    """ffmpeg/ffprobe failed or produced unusable output."""


class BlobNotFoundError(EpisodeAudioError):
    """A blob is missing or empty."""

    def __init__(self, path: str, reason: str = 'not found'):
        super().__init__(f'Blob {reason}: {path}')
        self.path = path


class QaFailure(EpisodeAudioError):
    """
    A quality check failed.

    The message always starts with the ``qa_*`` class so the failure
    classifier maps it to ``qa_failure``.
    """

    def __init__(self, verdict):
        super().__init__(f'{verdict.error_class}: {verdict.message}')
        self.verdict = verdict


class SegmentsNotReadyError(EpisodeAudioError):
    """One or more required segments cannot be stitched."""

    def __init__(self, episode_date: str, missing: List[str], not_ready: List[dict]):
        parts = []
        if missing:
            parts.append(f'Missing segments: {", ".join(missing)}')
        if not_ready:
            statuses = ', '.join(f'{s["segment_key"]} ({s["status"]})' for s in not_ready)
            parts.append(f'Not ready: {statuses}')
        super().__init__(f'Cannot stitch episode {episode_date}: {"; ".join(parts)}')
        self.episode_date = episode_date
        self.missing = missing
        self.not_ready = not_ready


class EpisodeNotPublishableError(EpisodeAudioError):
    """
    An episode failed the publish readiness gate.

    Carries the complete punch list: missing segments, blocked segments with
    their gate decision and blocking reasons, segments whose program or date
    disagree, and the artifact status.
    """

    def __init__(
        self,
        episode_id: str,
        missing: List[str],
        blocked: List[dict],
        artifact_path: Optional[str],
        artifact_missing: bool,
        mismatched: Optional[List[dict]] = None,
    ):
        self.episode_id = episode_id
        self.missing = missing
        self.blocked = blocked
        self.artifact_path = artifact_path
        self.artifact_missing = artifact_missing
        self.mismatched = mismatched or []
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        parts = []
        if self.missing:
            noun = 'segments' if len(self.missing) > 1 else 'segment'
            parts.append(f'Missing required {noun}: {", ".join(self.missing)}')
        if self.blocked:
            entries = []
            for seg in self.blocked:
                reasons = seg.get('blocking_reasons') or []
                detail = f'gate_decision={seg.get("gate_decision")}, audio_status={seg.get("audio_status")}'
                if reasons:
                    detail += f', reasons={", ".join(reasons)}'
                entries.append(f'{seg["segment_key"]} ({detail})')
            parts.append(f'Blocked: {"; ".join(entries)}')
        if self.mismatched:
            locations = ', '.join(
                f'{seg["segment_key"]}={seg["program"]}/{seg["episode_date"]}' for seg in self.mismatched
            )
            parts.append(f'Segments disagree on program/date: {locations}')
        if self.artifact_missing:
            where = self.artifact_path or 'unknown path'
            parts.append(f'Episode audio missing at {where}')
        return f'Episode {self.episode_id} not publishable: ' + ' | '.join(parts)
