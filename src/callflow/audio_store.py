"""Ephemeral storage for synthesized speech.

Files are written under one directory, served by the /audio route so the
carrier can <Play> them, and deleted after a TTL.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Optional

from callflow.scheduler import DeferredActions

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+\.mp3$")


class AudioStore:
    def __init__(self, directory: str, base_url: str, scheduler: DeferredActions, ttl_seconds: int = 300):
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")
        self.scheduler = scheduler
        self.ttl_seconds = ttl_seconds

    def url_for(self, filename: str) -> str:
        return f"{self.base_url}/audio/{filename}"

    async def save(self, audio: bytes, call_id: str, prefix: str = "reply") -> str:
        """Write audio, schedule its deletion, and return the public URL."""
        safe_call = re.sub(r"[^A-Za-z0-9]", "", call_id)[:40] or "call"
        filename = f"{prefix}_{safe_call}_{int(time.time() * 1000)}.mp3"
        path = self.directory / filename
        await asyncio.to_thread(self._write, path, audio)
        self.scheduler.schedule(self.ttl_seconds, lambda: self.delete(filename), f"Audio cleanup {filename}")
        return self.url_for(filename)

    def _write(self, path: Path, audio: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(audio)

    def path_for(self, filename: str) -> Optional[Path]:
        """Path of a stored file, or None for unknown or unsafe names."""
        if not _SAFE_NAME.match(filename):
            return None
        path = self.directory / filename
        return path if path.is_file() else None

    def delete(self, filename: str) -> bool:
        path = self.directory / filename
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted audio %s", filename)
        return True
