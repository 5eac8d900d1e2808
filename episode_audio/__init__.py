"""
Segment audio job pipeline: leased TTS jobs, quality gate, stitching and
publish readiness.
"""
from episode_audio.config import APP_VERSION as __version__

__all__ = ['__version__']
