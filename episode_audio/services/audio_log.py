"""
Named pipeline events.

Events go through the standard logging module with their fields attached as
``extra`` so the host's handler decides how they are rendered.
"""
import logging
from typing import Any

logger = logging.getLogger('episode_audio.events')

GENERATE_STARTED = 'audio.generate.started'
GENERATE_SUCCEEDED = 'audio.generate.succeeded'
GENERATE_FAILED = 'audio.generate.failed'
STITCH_STARTED = 'episode.stitch.started'
STITCH_SUCCEEDED = 'episode.stitch.succeeded'
STITCH_FAILED = 'episode.stitch.failed'
PUBLISH_STARTED = 'episode.publish.started'
PUBLISH_SUCCEEDED = 'episode.publish.succeeded'
PUBLISH_FAILED = 'episode.publish.failed'


def log_event(event: str, level: int = logging.INFO, **fields: Any):
    """Emit one pipeline event with its fields."""
    rendered = ' '.join(f'{key}={value}' for key, value in fields.items() if value is not None)
    logger.log(level, '%s %s', event, rendered, extra={'event': event, 'fields': fields})
