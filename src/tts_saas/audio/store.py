"""
Audio Store: Append-Once WAV Files on Local Disk.

A file is written under a temporary name and renamed into place on close,
so a reader either finds the complete file or nothing. That is what lets
the audio endpoint answer 404 while a generation is still being saved.

Layout:
    <audio_dir>/<generation_id>.wav          committed audio
    <audio_dir>/.<generation_id>.wav.<hex>.part  in-progress write

Usage:
    writer = await store.open_for_write("1712345678901-ab12cd3.wav")
    try:
        async for chunk in branch:
            await writer.write(chunk)
        await writer.close()
    except Exception:
        await writer.abort()
        raise
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncIterable, Optional
from uuid import uuid4

import aiofiles
import aiofiles.os
import anyio

from tts_saas.core.logging import debug, get_logger, verbose

_LOG = get_logger("tts-saas.audio_store")

AUDIO_SUFFIX = ".wav"


def is_safe_filename(filename: str) -> bool:
    """
    Check that a requested filename names a file directly in the store.

    Examples:
        >>> is_safe_filename("1712345678901-ab12cd3.wav")
        True
        >>> is_safe_filename("../settings.yaml")
        False
    """
    if not filename or filename.startswith("."):
        return False
    if ".." in filename or "/" in filename or "\\" in filename:
        return False
    return filename.endswith(AUDIO_SUFFIX)


class AudioWriter:
    """An open, not yet visible, audio file."""

    def __init__(self, handle, temp_path: Path, final_path: Path):
        self._handle = handle
        self._temp_path = temp_path
        self._final_path = final_path
        self._done = False
        self.bytes_written = 0

    @property
    def path(self) -> Path:
        return self._final_path

    async def write(self, chunk: bytes) -> None:
        if self._done:
            raise ValueError("writer is closed")
        await self._handle.write(chunk)
        self.bytes_written += len(chunk)

    async def close(self) -> Path:
        """Flush, fsync and atomically publish the file."""
        if self._done:
            return self._final_path
        self._done = True
        await self._handle.flush()
        await anyio.to_thread.run_sync(os.fsync, self._handle.fileno())
        await self._handle.close()
        if await aiofiles.os.path.exists(self._final_path):
            await aiofiles.os.remove(self._temp_path)
            raise FileExistsError(f"audio already stored: {self._final_path.name}")
        await aiofiles.os.replace(self._temp_path, self._final_path)
        verbose(_LOG, "audio_committed", file=self._final_path.name, bytes=self.bytes_written)
        return self._final_path

    async def abort(self) -> None:
        """Discard the partial file. Safe to call after close()."""
        if self._done:
            return
        self._done = True
        await self._handle.close()
        try:
            await aiofiles.os.remove(self._temp_path)
        except FileNotFoundError:
            pass
        debug(_LOG, "audio_aborted", file=self._final_path.name, bytes=self.bytes_written)


class AudioStore:
    """
    Directory of committed audio files.

    Args:
        audio_dir: Storage directory (created if missing)
        url_prefix: Public path prefix for references, e.g. "/v1/audio"
    """

    def __init__(self, audio_dir: str | Path, url_prefix: str = "/v1/audio"):
        self._dir = Path(audio_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def directory(self) -> Path:
        return self._dir

    def filename_for(self, generation_id: str) -> str:
        return f"{generation_id}{AUDIO_SUFFIX}"

    def url_for(self, generation_id: str) -> str:
        return f"{self._url_prefix}/{self.filename_for(generation_id)}"

    async def open_for_write(self, filename: str) -> AudioWriter:
        """
        Start writing a new file.

        Raises:
            ValueError: If the filename is not a plain .wav name
            FileExistsError: If the file is already committed
        """
        if not is_safe_filename(filename):
            raise ValueError(f"invalid audio filename: {filename!r}")
        final_path = self._dir / filename
        if await aiofiles.os.path.exists(final_path):
            raise FileExistsError(f"audio already stored: {filename}")
        temp_path = self._dir / f".{filename}.{uuid4().hex[:8]}.part"
        handle = await aiofiles.open(temp_path, "wb")
        return AudioWriter(handle, temp_path, final_path)

    async def save_stream(self, filename: str, chunks: AsyncIterable[bytes]) -> int:
        """
        Write every chunk and commit; on any error remove the partial file.

        Returns:
            Bytes written
        """
        writer = await self.open_for_write(filename)
        try:
            async for chunk in chunks:
                await writer.write(chunk)
            await writer.close()
        except BaseException:
            await writer.abort()
            raise
        return writer.bytes_written

    async def save(self, filename: str, data: bytes) -> int:
        writer = await self.open_for_write(filename)
        try:
            await writer.write(data)
            await writer.close()
        except BaseException:
            await writer.abort()
            raise
        return writer.bytes_written

    async def path_for(self, filename: str) -> Optional[Path]:
        """The committed file's path, or None if it is not (yet) there."""
        if not is_safe_filename(filename):
            return None
        path = self._dir / filename
        if await aiofiles.os.path.isfile(path):
            return path
        return None
