"""
Audio quality gate.

Each check is a pure function returning a QaVerdict. The gate folds the
checks in order and stops at the first failure; only the duration and
silence checks need an external probe, and they run only when the byte
check passed.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from episode_audio.config import (
    SEGMENT_KINDS,
    MIN_SCRIPT_WORDS,
    DURATION_BOUNDS_SECONDS,
    MIN_AUDIO_BYTES,
    MAX_LEADING_SILENCE_SECONDS,
)
from episode_audio.services.audio_tools import AudioTools

QA_SCRIPT_TOO_SHORT = 'qa_script_too_short'
QA_EMPTY = 'qa_empty'
QA_TOO_SMALL = 'qa_too_small'
QA_TOO_SHORT = 'qa_too_short'
QA_TOO_LONG = 'qa_too_long'
QA_LEADING_SILENCE = 'qa_leading_silence'


@dataclass(frozen=True)
class QaVerdict:
    ok: bool
    error_class: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def passed(cls) -> 'QaVerdict':
        return cls(ok=True)

    @classmethod
    def failed(cls, error_class: str, message: str) -> 'QaVerdict':
        return cls(ok=False, error_class=error_class, message=message)


@dataclass(frozen=True)
class QaThresholds:
    min_script_words: Dict[str, int] = field(default_factory=lambda: dict(MIN_SCRIPT_WORDS))
    duration_bounds: Dict[str, Tuple[float, float]] = field(default_factory=lambda: dict(DURATION_BOUNDS_SECONDS))
    min_audio_bytes: int = MIN_AUDIO_BYTES
    max_leading_silence: float = MAX_LEADING_SILENCE_SECONDS


@dataclass(frozen=True)
class QaReport:
    verdict: QaVerdict
    duration_seconds: Optional[float] = None
    leading_silence_seconds: Optional[float] = None


DEFAULT_THRESHOLDS = QaThresholds()


def segment_kind(segment_key: str) -> str:
    """Map a segment key to its kind: opening, body or closing."""
    return SEGMENT_KINDS.get(segment_key, 'body')


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def check_script_word_count(
    segment_key: str,
    script_text: str,
    thresholds: QaThresholds = DEFAULT_THRESHOLDS,
) -> QaVerdict:
    """Script must be long enough to reach the segment's minimum spoken duration."""
    kind = segment_kind(segment_key)
    minimum = thresholds.min_script_words.get(kind, 0)
    words = count_words(script_text)
    if words < minimum:
        return QaVerdict.failed(
            QA_SCRIPT_TOO_SHORT,
            f'{segment_key} script has {words} words, minimum for {kind} is {minimum}',
        )
    return QaVerdict.passed()


def check_non_empty(audio: bytes, thresholds: QaThresholds = DEFAULT_THRESHOLDS) -> QaVerdict:
    if not audio:
        return QaVerdict.failed(QA_EMPTY, 'Audio buffer is empty')
    if len(audio) < thresholds.min_audio_bytes:
        return QaVerdict.failed(
            QA_TOO_SMALL,
            f'Audio buffer too small: {len(audio)} bytes (minimum {thresholds.min_audio_bytes})',
        )
    return QaVerdict.passed()


def check_duration(
    segment_key: str,
    duration_seconds: float,
    thresholds: QaThresholds = DEFAULT_THRESHOLDS,
) -> QaVerdict:
    kind = segment_kind(segment_key)
    low, high = thresholds.duration_bounds[kind]
    if duration_seconds < low:
        return QaVerdict.failed(
            QA_TOO_SHORT,
            f'{segment_key} audio is {duration_seconds:.2f}s, below minimum {low:.0f}s',
        )
    if duration_seconds > high:
        return QaVerdict.failed(
            QA_TOO_LONG,
            f'{segment_key} audio is {duration_seconds:.2f}s, above maximum {high:.0f}s',
        )
    return QaVerdict.passed()


def check_leading_silence(silence_seconds: float, thresholds: QaThresholds = DEFAULT_THRESHOLDS) -> QaVerdict:
    if silence_seconds > thresholds.max_leading_silence:
        return QaVerdict.failed(
            QA_LEADING_SILENCE,
            f'Leading silence {silence_seconds:.2f}s exceeds {thresholds.max_leading_silence:.2f}s',
        )
    return QaVerdict.passed()


def first_failure(verdicts: Iterable[QaVerdict]) -> QaVerdict:
    """Fold verdicts in order; the first failure wins and the rest are not evaluated."""
    for verdict in verdicts:
        if not verdict.ok:
            return verdict
    return QaVerdict.passed()


class QualityGate:
    """
    Post-synthesis checks: non-empty bytes, duration bounds, leading silence.

    The script word count check runs before synthesis and is exposed here as
    check_script so callers hold a single gate object.
    """

    def __init__(self, audio_tools: AudioTools, thresholds: QaThresholds = DEFAULT_THRESHOLDS):
        self.audio_tools = audio_tools
        self.thresholds = thresholds

    def check_script(self, segment_key: str, script_text: str) -> QaVerdict:
        return check_script_word_count(segment_key, script_text, self.thresholds)

    async def evaluate(self, segment_key: str, audio: bytes) -> QaReport:
        verdict = check_non_empty(audio, self.thresholds)
        if not verdict.ok:
            return QaReport(verdict)

        duration = await self.audio_tools.probe_duration(audio)
        verdict = check_duration(segment_key, duration, self.thresholds)
        if not verdict.ok:
            return QaReport(verdict, duration_seconds=duration)

        silence = await self.audio_tools.detect_leading_silence(audio, duration)
        verdict = check_leading_silence(silence, self.thresholds)
        return QaReport(verdict, duration_seconds=duration, leading_silence_seconds=silence)

