"""
Job fingerprints and deterministic blob paths.

Re-running the same logical job with the same inputs always lands on the same
storage location, so uploads are idempotent independently of the lease store.
"""
from urllib.parse import quote


def build_job_key(
    episode_id: str,
    segment_key: str,
    script_version: int,
    voice_id: str,
    model_id: str,
) -> str:
    """Fingerprint of everything that determines the synthesized audio."""
    return f'{episode_id}::{segment_key}::{script_version}::{voice_id}::{model_id}'


def build_segment_audio_path(
    episode_date: str,
    segment_key: str,
    script_version: int,
    job_key: str,
    ext: str = 'mp3',
) -> str:
    safe_job_key = quote(job_key, safe='')
    return f'segments/{episode_date}/{segment_key}/v{script_version}/{safe_job_key}.{ext}'


def build_episode_audio_path(program: str, episode_date: str) -> str:
    return f'{program}/episodes/{episode_date}/episode.mp3'
