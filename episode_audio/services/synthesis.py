"""
Text-to-speech adapter.

A single-attempt HTTP call: retries belong to the worker loop.
"""
import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from episode_audio.config import TTS_API_URL, TTS_API_KEY, TTS_REQUEST_TIMEOUT
from episode_audio.errors import ConfigurationError, QaFailure, SynthesisError
from episode_audio.services.audio_qa import QA_EMPTY, QaVerdict

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 500


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: str, model_id: str) -> bytes:
        ...


class SynthesisClient:
    """
    ElevenLabs-style text-to-speech client returning MP3 bytes.

    An httpx.AsyncClient may be injected (tests pass one backed by
    httpx.MockTransport); otherwise one is created per call with the
    configured timeout.
    """

    codec = 'mp3'

    def __init__(
        self,
        api_key: str = TTS_API_KEY,
        base_url: str = TTS_API_URL,
        timeout: float = TTS_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._client = client

    async def synthesize(self, text: str, voice_id: str, model_id: str) -> bytes:
        """
        Synthesize text with the given voice and model.

        Raises:
            ConfigurationError: API key, voice or model missing
            SynthesisError: Non-success status
            QaFailure: Success status with an empty body (qa_empty)
        """
        if not self._api_key:
            raise ConfigurationError('missing_config: TTS API key is not set')
        if not voice_id or not model_id:
            raise ConfigurationError('missing_config: voice_id and model_id are required')

        url = f'{self._base_url}/text-to-speech/{quote(voice_id, safe="")}'
        headers = {
            'xi-api-key': self._api_key,
            'Content-Type': 'application/json',
            'Accept': 'audio/mpeg',
        }
        payload = {'text': text, 'model_id': model_id}

        if self._client is not None:
            response = await self._client.post(url, headers=headers, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, headers=headers, json=payload)

        if response.status_code >= 400:
            body = response.text[:ERROR_BODY_LIMIT]
            raise SynthesisError(
                f'TTS request failed ({response.status_code}): {body}',
                status_code=response.status_code,
                body=body,
            )

        audio = response.content
        if not audio:
            raise QaFailure(QaVerdict.failed(QA_EMPTY, 'TTS service returned an empty audio buffer'))

        logger.debug('Synthesized %d bytes with voice %s', len(audio), voice_id)
        return audio
