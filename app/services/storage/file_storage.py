"""
File storage collaborator for interview transcripts and audio.

Ingest persists files before the candidate write so the returned file ids
can be attached to the record. The local implementation keeps one file per
conversation and kind, so re-processing a conversation overwrites in place.
"""

import asyncio
import mimetypes
import re
from pathlib import Path
from typing import Protocol

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

AUDIO_DOWNLOAD_TIMEOUT = 60.0
_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class FileStorageError(Exception):
    """Raised when a file cannot be stored or downloaded."""

    def __init__(self, message: str, file_id: str | None = None):
        super().__init__(message)
        self.file_id = file_id


class FileStorage(Protocol):
    async def store_transcript(self, text: str, conversation_id: str) -> str: ...

    async def store_audio(
        self, content: bytes, conversation_id: str, content_type: str | None = None
    ) -> str: ...

    async def download_audio(self, url: str, conversation_id: str) -> str: ...

    async def retrieve(self, file_id: str) -> bytes | None: ...


class LocalFileStorage:
    """Stores files under a base directory; file ids are relative paths."""

    def __init__(self, base_dir: str | Path, http_client: httpx.AsyncClient | None = None):
        self.base_dir = Path(base_dir)
        self._http_client = http_client

    def _path_for(self, file_id: str) -> Path:
        path = (self.base_dir / file_id).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise FileStorageError("File id escapes storage directory", file_id=file_id)
        return path

    async def _write(self, file_id: str, content: bytes) -> str:
        path = self._path_for(file_id)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, content)
        logger.info("File stored", file_id=file_id, size_bytes=len(content))
        return file_id

    async def store_transcript(self, text: str, conversation_id: str) -> str:
        file_id = f"transcripts/{_SAFE_ID.sub('_', conversation_id)}.txt"
        return await self._write(file_id, text.encode("utf-8"))

    async def store_audio(
        self, content: bytes, conversation_id: str, content_type: str | None = None
    ) -> str:
        mime = (content_type or "").split(";")[0].strip()
        extension = mimetypes.guess_extension(mime) or ".mp3"
        file_id = f"audio/{_SAFE_ID.sub('_', conversation_id)}{extension}"
        return await self._write(file_id, content)

    async def download_audio(self, url: str, conversation_id: str) -> str:
        client = self._http_client or httpx.AsyncClient(timeout=httpx.Timeout(AUDIO_DOWNLOAD_TIMEOUT))
        try:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FileStorageError(f"Audio download failed: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        return await self.store_audio(
            response.content, conversation_id, response.headers.get("content-type")
        )

    async def retrieve(self, file_id: str) -> bytes | None:
        path = self._path_for(file_id)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_bytes)
