"""
Narrow interfaces to the external services a render depends on, plus the
default HTTP and filesystem implementations.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import httpx

from app.domain.errors import RenderError, StorageError
from app.render.prompts import MOOD_DETECTION_PROMPT, normalize_mood

logger = logging.getLogger(__name__)


class FrameRenderer(Protocol):
    async def render_frame(self, prompt: str) -> str:
        """Return a URL for the rendered frame. May raise."""
        ...


class AssetStore(Protocol):
    async def store(self, data: bytes, path: str) -> str:
        """Persist `data` at `path` and return its public URL. May raise."""
        ...


class MoodDetector(Protocol):
    async def detect_mood(self, prompt: str) -> str:
        ...


class HttpFrameRenderer:
    def __init__(self, client: httpx.AsyncClient, url: str, api_key: Optional[str] = None):
        self.client = client
        self.url = url
        self.api_key = api_key

    async def render_frame(self, prompt: str) -> str:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        resp = await self.client.post(self.url, json={"prompt": prompt}, headers=headers)
        resp.raise_for_status()
        data = resp.json()

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise RenderError("renderer response has no frame url")
        return url


class HttpMoodDetector:
    def __init__(self, client: httpx.AsyncClient, url: str):
        self.client = client
        self.url = url

    async def detect_mood(self, prompt: str) -> str:
        resp = await self.client.post(self.url, json={"prompt": MOOD_DETECTION_PROMPT.format(prompt=prompt)})
        resp.raise_for_status()
        data = resp.json()
        return normalize_mood(data.get("text") if isinstance(data, dict) else None)


class LocalAssetStore:
    """Writes under `root`; files are expected to be served at `public_base_url`."""

    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    async def store(self, data: bytes, path: str) -> str:
        target = self.root / path
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise StorageError(f"failed to write {path}: {e}") from e
        logger.info(f"Stored {len(data)} bytes at {target}")
        return f"{self.public_base_url}/{path}"

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
