"""Default HTTP / filesystem implementations of the render capabilities."""
import json

import httpx
import pytest

from app.domain.errors import RenderError
from app.render.capabilities import HttpFrameRenderer, HttpMoodDetector, LocalAssetStore


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_frame_renderer_posts_prompt_with_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"url": "https://frames.test/1.png"})

    async with client_for(handler) as client:
        renderer = HttpFrameRenderer(client, "https://render.test/v1/frames", api_key="k")
        assert await renderer.render_frame("a fox") == "https://frames.test/1.png"

    assert json.loads(seen[0].content) == {"prompt": "a fox"}
    assert seen[0].headers["Authorization"] == "Bearer k"


@pytest.mark.asyncio
async def test_frame_renderer_errors():
    async with client_for(lambda r: httpx.Response(200, json={})) as client:
        with pytest.raises(RenderError):
            await HttpFrameRenderer(client, "https://render.test").render_frame("x")

    async with client_for(lambda r: httpx.Response(429)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpFrameRenderer(client, "https://render.test").render_frame("x")


@pytest.mark.asyncio
async def test_mood_detector_normalizes_answer():
    async with client_for(lambda r: httpx.Response(200, json={"text": " Hopeful\n"})) as client:
        assert await HttpMoodDetector(client, "https://llm.test").detect_mood("sunrise") == "hopeful"


@pytest.mark.asyncio
async def test_local_store_writes_and_returns_public_url(tmp_path):
    store = LocalAssetStore(str(tmp_path), "http://media.test/media/")
    url = await store.store(b"data", "media-videos/a.mp4")
    assert url == "http://media.test/media/media-videos/a.mp4"
    assert (tmp_path / "media-videos" / "a.mp4").read_bytes() == b"data"
