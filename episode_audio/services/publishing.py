"""
Publishing adapters.

Implementations push a stitched episode to an external destination (RSS
host, storage + webhook, ...). publish_episode always runs the readiness
gate first.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence

from episode_audio.services import audio_log
from episode_audio.services.paths import build_episode_audio_path
from episode_audio.services.publish_gate import PublishReadinessGate

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    external_id: str
    url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class Publisher(Protocol):
    name: str

    async def publish_episode(
        self,
        program: str,
        episode_date: str,
        title: str,
        audio_storage_path: str,
        description: Optional[str] = None,
    ) -> PublishResult:
        ...


class LocalOnlyPublisher:
    """No-op publisher for local development; returns a placeholder id."""

    name = 'local-only'

    async def publish_episode(
        self,
        program: str,
        episode_date: str,
        title: str,
        audio_storage_path: str,
        description: Optional[str] = None,
    ) -> PublishResult:
        return PublishResult(
            external_id=f'local-{episode_date}',
            metadata={
                'note': 'Local-only publisher: no external publish performed',
                'program': program,
                'episode_date': episode_date,
            },
        )


async def publish_episode(
    gate: PublishReadinessGate,
    publisher: Publisher,
    episode_id: str,
    program: str,
    episode_date: str,
    title: str,
    description: Optional[str] = None,
    required_segments: Optional[Sequence[str]] = None,
) -> PublishResult:
    """
    Publish an episode after it passes the readiness gate.

    Raises:
        EpisodeNotPublishableError: The episode is not ready yet
    """
    audio_log.log_event(audio_log.PUBLISH_STARTED, episode_date=episode_date, program=program)
    try:
        await gate.assert_publishable(episode_id, required_segments)
        result = await publisher.publish_episode(
            program=program,
            episode_date=episode_date,
            title=title,
            audio_storage_path=build_episode_audio_path(program, episode_date),
            description=description,
        )
    except Exception as exc:
        audio_log.log_event(
            audio_log.PUBLISH_FAILED,
            level=logging.WARNING,
            episode_date=episode_date,
            program=program,
            error_code=type(exc).__name__,
            error_message=str(exc),
        )
        raise

    audio_log.log_event(
        audio_log.PUBLISH_SUCCEEDED,
        episode_date=episode_date,
        program=program,
        publisher=publisher.name,
        external_id=result.external_id,
        url=result.url,
    )
    return result
