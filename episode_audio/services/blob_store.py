"""
Blob storage adapters for segment and episode audio.

Uploads overwrite: a retried job writes the same bytes to the same path.
"""
import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from episode_audio.config import (
    BLOB_DIR,
    BLOB_STORE_URL,
    BLOB_STORE_BUCKET,
    BLOB_STORE_API_KEY,
    BLOB_REQUEST_TIMEOUT,
)
from episode_audio.errors import BlobNotFoundError, ConfigurationError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str = 'audio/mpeg') -> None:
        ...

    async def download(self, path: str) -> bytes:
        ...

    async def exists(self, path: str) -> bool:
        ...


class LocalBlobStore:
    """
    Filesystem blob store rooted at a directory.

    Writes go to a temporary file in the target directory and are renamed
    into place, so readers never observe a partial object.
    """

    def __init__(self, root: Path = BLOB_DIR):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / path).resolve()
        if target == root or root not in target.parents:
            raise ValueError(f'Blob path escapes store root: {path}')
        return target

    def _write(self, target: Path, data: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f'.{target.name}.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def upload(self, path: str, data: bytes, content_type: str = 'audio/mpeg') -> None:
        target = self._resolve(path)
        await asyncio.to_thread(self._write, target, data)
        logger.debug('Stored %d bytes at %s (%s)', len(data), path, content_type)

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        data = await asyncio.to_thread(target.read_bytes)
        if not data:
            raise BlobNotFoundError(path, reason='is empty')
        return data

    async def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class HttpBlobStore:
    """
    Object storage over a REST endpoint.

    Objects live at ``{base_url}/object/{bucket}/{path}``; uploads send
    ``x-upsert: true`` so repeated writes replace the object.
    """

    def __init__(
        self,
        base_url: str = BLOB_STORE_URL,
        bucket: str = BLOB_STORE_BUCKET,
        api_key: str = BLOB_STORE_API_KEY,
        timeout: float = BLOB_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ConfigurationError('missing_config: blob store URL is not set')
        self._base_url = base_url.rstrip('/')
        self._bucket = bucket
        self._headers = {'Authorization': f'Bearer {api_key}'} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, path: str) -> str:
        return f'{self._base_url}/object/{quote(self._bucket, safe="")}/{quote(path)}'

    async def upload(self, path: str, data: bytes, content_type: str = 'audio/mpeg') -> None:
        headers = {**self._headers, 'Content-Type': content_type, 'x-upsert': 'true'}
        response = await self._client.post(self._url(path), content=data, headers=headers)
        response.raise_for_status()

    async def download(self, path: str) -> bytes:
        response = await self._client.get(self._url(path), headers=self._headers)
        if response.status_code == 404:
            raise BlobNotFoundError(path)
        response.raise_for_status()
        if not response.content:
            raise BlobNotFoundError(path, reason='is empty')
        return response.content

    async def exists(self, path: str) -> bool:
        response = await self._client.head(self._url(path), headers=self._headers)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    async def aclose(self):
        await self._client.aclose()


def build_blob_store() -> BlobStore:
    """Blob store selected by configuration."""
    if BLOB_STORE_URL:
        return HttpBlobStore()
    return LocalBlobStore()
