"""
ffprobe/ffmpeg adapter: duration probing, leading silence detection and
concatenation of MP3 segments.

Audio bytes are written to a temporary directory for each call; the
directory is removed whatever the outcome.
"""
import asyncio
import logging
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from episode_audio.config import (
    FFMPEG_BIN,
    FFPROBE_BIN,
    AUDIO_TOOL_TIMEOUT,
    SILENCE_NOISE_DB,
    SILENCE_MIN_SECONDS,
)
from episode_audio.errors import AudioToolError

logger = logging.getLogger(__name__)

_SILENCE_START = re.compile(r'silence_start:\s*(-?[0-9.]+)')
_SILENCE_END = re.compile(r'silence_end:\s*(-?[0-9.]+)')

# A silence window starting this close to zero counts as leading silence
LEADING_SILENCE_EPSILON = 0.05


class AudioTools(Protocol):
    async def probe_duration(self, audio: bytes) -> float:
        ...

    async def detect_leading_silence(self, audio: bytes, total_duration: Optional[float] = None) -> float:
        ...

    async def concat(self, segments: Sequence[bytes]) -> bytes:
        ...


def parse_duration(stdout: str) -> float:
    """Parse ffprobe ``format=duration`` output."""
    raw = stdout.strip()
    try:
        duration = float(raw)
    except ValueError:
        raise AudioToolError(f'ffprobe returned invalid duration: "{raw}"') from None
    if duration != duration or duration <= 0:
        raise AudioToolError(f'ffprobe returned invalid duration: "{raw}"')
    return duration


def parse_leading_silence(stderr: str, total_duration: Optional[float] = None) -> float:
    """
    Leading silence in seconds from ffmpeg silencedetect output.

    silencedetect logs ``silence_start`` / ``silence_end`` pairs in order.
    Only a window starting at (about) zero is leading silence. A window
    that never ends covers the rest of the clip.
    """
    starts = [float(m.group(1)) for m in _SILENCE_START.finditer(stderr)]
    ends = [float(m.group(1)) for m in _SILENCE_END.finditer(stderr)]

    if not starts or starts[0] > LEADING_SILENCE_EPSILON:
        return 0.0
    if ends:
        return max(ends[0], 0.0)
    return total_duration if total_duration is not None else float('inf')


def escape_concat_path(path: Path) -> str:
    """Escape one file path for ffmpeg concat list format."""
    return str(path).replace("'", "'\\''")


def build_concat_list(paths: Sequence[Path]) -> str:
    return '\n'.join(f"file '{escape_concat_path(p)}'" for p in paths) + '\n'


class FfmpegAudioTools:
    """Runs ffprobe/ffmpeg as subprocesses with a per-call timeout."""

    def __init__(
        self,
        ffmpeg_bin: str = FFMPEG_BIN,
        ffprobe_bin: str = FFPROBE_BIN,
        timeout: float = AUDIO_TOOL_TIMEOUT,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    async def _run(self, command: List[str]) -> tuple:
        """Run a command and return (stdout, stderr) as text."""
        tool = Path(command[0]).name
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AudioToolError(f'Audio tool `{tool}` is not available on PATH') from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise AudioToolError(f'{tool} timed out after {self.timeout:.0f}s') from None

        stdout_text = stdout.decode('utf-8', errors='replace')
        stderr_text = stderr.decode('utf-8', errors='replace')
        if process.returncode != 0:
            detail = stderr_text.strip()[-1000:] or 'no stderr output'
            raise AudioToolError(f'{tool} exited with code {process.returncode}: {detail}')
        return stdout_text, stderr_text

    async def probe_duration(self, audio: bytes) -> float:
        with tempfile.TemporaryDirectory(prefix='episode_audio_') as tmpdir:
            path = Path(tmpdir) / 'clip.mp3'
            path.write_bytes(audio)
            stdout, _ = await self._run([
                self.ffprobe_bin,
                '-v', 'error',
                '-show_entries', 'format=duration',
                '-of', 'default=noprint_wrappers=1:nokey=1',
                str(path),
            ])
        return parse_duration(stdout)

    async def detect_leading_silence(self, audio: bytes, total_duration: Optional[float] = None) -> float:
        with tempfile.TemporaryDirectory(prefix='episode_audio_') as tmpdir:
            path = Path(tmpdir) / 'clip.mp3'
            path.write_bytes(audio)
            # silencedetect reports on stderr
            _, stderr = await self._run([
                self.ffmpeg_bin,
                '-hide_banner',
                '-nostats',
                '-i', str(path),
                '-af', f'silencedetect=noise={SILENCE_NOISE_DB}dB:d={SILENCE_MIN_SECONDS}',
                '-f', 'null',
                '-',
            ])
        return parse_leading_silence(stderr, total_duration)

    async def concat(self, segments: Sequence[bytes]) -> bytes:
        """Concatenate MP3 segments in the given order with the concat demuxer."""
        if not segments:
            raise AudioToolError('Cannot concatenate: no segments provided')

        with tempfile.TemporaryDirectory(prefix='episode_audio_stitch_') as tmpdir:
            work_dir = Path(tmpdir)
            parts = []
            for index, data in enumerate(segments):
                part = work_dir / f'segment_{index}.mp3'
                part.write_bytes(data)
                parts.append(part)

            concat_path = work_dir / 'concat_list.txt'
            concat_path.write_text(build_concat_list(parts), encoding='utf-8')
            output_path = work_dir / 'episode.mp3'

            await self._run([
                self.ffmpeg_bin,
                '-y',
                '-hide_banner',
                '-loglevel', 'error',
                '-f', 'concat',
                '-safe', '0',
                '-i', str(concat_path),
                '-c', 'copy',
                str(output_path),
            ])

            if not output_path.exists():
                raise AudioToolError('ffmpeg did not produce a stitched output')
            output = output_path.read_bytes()

        logger.debug('Concatenated %d segments into %d bytes', len(segments), len(output))
        return output
