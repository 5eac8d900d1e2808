"""
Failure classifier and retry policy tests.
"""
import httpx
import pytest

from episode_audio.errors import ConfigurationError, QaFailure, SynthesisError
from episode_audio.services.audio_qa import QaVerdict
from episode_audio.services.retry_policy import classify_error, decide_retry


class TestClassifyError:
    """Tests for mapping errors to classes."""

    @pytest.mark.parametrize('message,expected', [
        ('TTS request failed (429): too many requests', 'rate_limited'),
        ('Rate limit exceeded', 'rate_limited'),
        ('Request timed out', 'timeout'),
        ('ETIMEDOUT while reading', 'timeout'),
        ('Connection reset by peer', 'network'),
        ('fetch failed', 'network'),
        ('qa_too_short: intro audio is 4.00s', 'qa_failure'),
        ('missing_config: voice_id and model_id are required', 'missing_config'),
        ('something unexpected', 'worker_error'),
    ])
    def test_message_rules(self, message, expected):
        """Test message patterns map to their error class."""
        assert classify_error(RuntimeError(message)).error_class == expected

    def test_rate_limit_wins_over_later_rules(self):
        """Test the first matching rule decides."""
        error = RuntimeError('429 after connection timeout')
        assert classify_error(error).error_class == 'rate_limited'

    def test_httpx_timeout_without_message(self):
        """Test httpx timeouts classify by type when the message is empty."""
        assert classify_error(httpx.ReadTimeout('')).error_class == 'timeout'

    def test_httpx_transport_error_without_message(self):
        """Test other httpx transport errors classify as network."""
        assert classify_error(httpx.RemoteProtocolError('')).error_class == 'network'

    def test_configuration_error(self):
        """Test configuration errors classify as missing_config."""
        assert classify_error(ConfigurationError('no API key')).error_class == 'missing_config'

    def test_qa_failure(self):
        """Test QA failures carry their qa_* class into the message."""
        error = QaFailure(QaVerdict.failed('qa_empty', 'Audio buffer is empty'))
        classification = classify_error(error)

        assert classification.error_class == 'qa_failure'
        assert classification.message == 'qa_empty: Audio buffer is empty'

    def test_synthesis_server_error(self):
        """Test a plain 5xx from the TTS service is a worker error."""
        error = SynthesisError('TTS request failed (500): internal', status_code=500)
        assert classify_error(error).error_class == 'worker_error'


class TestDecideRetry:
    """Tests for the retry decision."""

    @pytest.mark.parametrize('attempt,backoff_ms', [(1, 30_000), (2, 120_000)])
    def test_transient_errors_back_off(self, attempt, backoff_ms):
        """Test transient failures retry on the fixed schedule."""
        decision = decide_retry(attempt, 'timeout')

        assert decision.should_retry is True
        assert decision.backoff_ms == backoff_ms

    def test_no_retry_at_ceiling(self):
        """Test the third attempt is final."""
        assert decide_retry(3, 'timeout').should_retry is False

    @pytest.mark.parametrize('error_class', ['qa_failure', 'missing_config', 'worker_error', 'lease_expired'])
    def test_non_transient_errors_are_terminal(self, error_class):
        """Test only transient classes retry."""
        assert decide_retry(1, error_class).should_retry is False

    @pytest.mark.parametrize('error_class', ['rate_limited', 'network'])
    def test_other_transient_classes_retry(self, error_class):
        """Test rate limits and network errors are retried."""
        assert decide_retry(1, error_class).should_retry is True
