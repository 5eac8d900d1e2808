"""
Failure classification and retry policy for segment audio jobs.

Only transient infrastructure failures are retried. Quality failures are
terminal because the script is unchanged and would fail the same check again.
"""
import re
from dataclasses import dataclass

import httpx

from episode_audio.config import MAX_ATTEMPTS, RETRY_BACKOFF_MS
from episode_audio.errors import ConfigurationError

RATE_LIMITED = 'rate_limited'
TIMEOUT = 'timeout'
NETWORK = 'network'
QA_FAILURE = 'qa_failure'
MISSING_CONFIG = 'missing_config'
WORKER_ERROR = 'worker_error'
LEASE_EXPIRED = 'lease_expired'

RETRYABLE_CLASSES = frozenset({RATE_LIMITED, TIMEOUT, NETWORK})

# Ordered: the first matching pattern wins.
_MESSAGE_RULES = (
    (re.compile(r'\b429\b|rate[ _-]?limit|too many requests', re.IGNORECASE), RATE_LIMITED),
    (re.compile(r'timeout|timed out|etimedout', re.IGNORECASE), TIMEOUT),
    (re.compile(r'network|connection|connect error|econnreset|econnrefused|dns|fetch failed', re.IGNORECASE), NETWORK),
    (re.compile(r'\bqa_\w+', re.IGNORECASE), QA_FAILURE),
    (re.compile(r'missing_config', re.IGNORECASE), MISSING_CONFIG),
)


@dataclass(frozen=True)
class ErrorClassification:
    error_class: str
    message: str


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    backoff_ms: int = 0


def classify_error(error: BaseException) -> ErrorClassification:
    """Map a raised error to an error class using its message."""
    message = str(error) or error.__class__.__name__

    for pattern, error_class in _MESSAGE_RULES:
        if pattern.search(message):
            return ErrorClassification(error_class, message)

    # httpx transport errors frequently carry an empty message
    if isinstance(error, httpx.TimeoutException):
        return ErrorClassification(TIMEOUT, message)
    if isinstance(error, httpx.TransportError):
        return ErrorClassification(NETWORK, message)
    if isinstance(error, ConfigurationError):
        return ErrorClassification(MISSING_CONFIG, message)

    return ErrorClassification(WORKER_ERROR, message)


def decide_retry(attempt: int, error_class: str) -> RetryDecision:
    """
    Decide whether a failed attempt should be retried.

    Args:
        attempt: 1-based attempt number of the failed claim
        error_class: Class returned by classify_error

    Returns:
        RetryDecision with the backoff from the fixed schedule
    """
    if attempt >= MAX_ATTEMPTS:
        return RetryDecision(should_retry=False)

    if error_class not in RETRYABLE_CLASSES:
        return RetryDecision(should_retry=False)

    index = min(max(attempt, 1) - 1, len(RETRY_BACKOFF_MS) - 1)
    return RetryDecision(should_retry=True, backoff_ms=RETRY_BACKOFF_MS[index])
