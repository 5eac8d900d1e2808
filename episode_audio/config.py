"""
Application configuration and paths.

Every value can be overridden through an ``EPISODE_AUDIO_*`` environment
variable so worker processes can be tuned without code changes.
"""
import os
from pathlib import Path


def _env(name: str, default: str) -> str:
    return os.environ.get(f'EPISODE_AUDIO_{name}', default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


def _env_flag(name: str) -> bool:
    return _env(name, '0').lower() in ('1', 'true', 'yes')


# Application identity
APP_NAME = 'EpisodeAudio'
APP_VERSION = '0.1.0'

# Server configuration
SERVER_HOST = _env('HOST', '127.0.0.1')
SERVER_PORT = _env_int('PORT', 5111)

# Data directory (database + local blob store)
DATA_DIR = Path(_env('DATA_DIR', str(Path.home() / '.episode-audio')))

# Database configuration
DATABASE_PATH = DATA_DIR / 'episode_audio.db'
DATABASE_URL = _env('DATABASE_URL', f'sqlite+aiosqlite:///{DATABASE_PATH}')

# Seconds a SQLite writer waits on a locked database before giving up
DATABASE_BUSY_TIMEOUT = _env_float('DATABASE_BUSY_TIMEOUT', 30.0)

# Blob storage. When BLOB_STORE_URL is set the HTTP object store is used,
# otherwise blobs live under BLOB_DIR.
BLOB_DIR = Path(_env('BLOB_DIR', str(DATA_DIR / 'blobs')))
BLOB_STORE_URL = _env('BLOB_STORE_URL', '')
BLOB_STORE_BUCKET = _env('BLOB_STORE_BUCKET', 'audio-private')
BLOB_STORE_API_KEY = _env('BLOB_STORE_API_KEY', '')
BLOB_REQUEST_TIMEOUT = _env_float('BLOB_REQUEST_TIMEOUT', 60.0)

# Existence probe used by the publish gate
ARTIFACT_PROBE_TIMEOUT = _env_float('ARTIFACT_PROBE_TIMEOUT', 10.0)

# Text-to-speech service
TTS_API_URL = _env('TTS_API_URL', 'https://api.elevenlabs.io/v1')
TTS_API_KEY = os.environ.get('ELEVENLABS_API_KEY', _env('TTS_API_KEY', ''))
TTS_VOICE_ID = _env('TTS_VOICE_ID', '') or None
TTS_MODEL_ID = _env('TTS_MODEL_ID', '') or None
TTS_REQUEST_TIMEOUT = _env_float('TTS_REQUEST_TIMEOUT', 120.0)

# Worker loop
WORKER_POLL_SECONDS = _env_float('WORKER_POLL_SECONDS', 5.0)
WORKER_BATCH_LIMIT = _env_int('WORKER_BATCH_LIMIT', 1)
WORKER_DISABLED = _env_flag('WORKER_DISABLED')
WORKER_AUTOSTART = not _env_flag('WORKER_NO_AUTOSTART')

# Lease TTLs
SEGMENT_LEASE_TTL_MINUTES = _env_int('SEGMENT_LEASE_TTL_MINUTES', 15)
BATCH_RUN_TTL_MINUTES = {
    'weekly_scripts': _env_int('WEEKLY_SCRIPTS_TTL_MINUTES', 180),
    'daily_stitch': _env_int('DAILY_STITCH_TTL_MINUTES', 120),
}

# Retry policy: attempt ceiling and fixed backoff schedule (milliseconds)
MAX_ATTEMPTS = 3
RETRY_BACKOFF_MS = (30_000, 120_000, 600_000)

# Episode layout
DEFAULT_PROGRAM = _env('PROGRAM', 'daily-brief')
REQUIRED_SEGMENTS = ('intro', 'main_themes', 'closing')
SEGMENT_KINDS = {
    'intro': 'opening',
    'main_themes': 'body',
    'closing': 'closing',
}

# Quality gate thresholds, keyed by segment kind
MIN_SCRIPT_WORDS = {
    'opening': _env_int('OPENING_MIN_WORDS', 40),
    'body': _env_int('BODY_MIN_WORDS', 280),
    'closing': _env_int('CLOSING_MIN_WORDS', 30),
}
DURATION_BOUNDS_SECONDS = {
    'opening': (10.0, 120.0),
    'body': (110.0, 720.0),
    'closing': (8.0, 120.0),
}
MIN_AUDIO_BYTES = 1024
MAX_LEADING_SILENCE_SECONDS = _env_float('MAX_LEADING_SILENCE_SECONDS', 1.0)

# ffmpeg tooling
FFMPEG_BIN = _env('FFMPEG_BIN', 'ffmpeg')
FFPROBE_BIN = _env('FFPROBE_BIN', 'ffprobe')
AUDIO_TOOL_TIMEOUT = _env_float('AUDIO_TOOL_TIMEOUT', 120.0)
SILENCE_NOISE_DB = -35
SILENCE_MIN_SECONDS = 0.35

# Stitch sweep
STITCH_SCAN_LIMIT = _env_int('STITCH_SCAN_LIMIT', 30)


def ensure_directories():
    """Create required directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    BLOB_DIR.mkdir(parents=True, exist_ok=True)
