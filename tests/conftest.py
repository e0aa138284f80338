import asyncio
import json

import httpx
import pytest

from mianix.configs import MianixSettings
from mianix.providers.models import LLMProvider, ModelDefaults, ModelReference
from mianix.store.file_vault import FileVault


def sse_body(*frames) -> bytes:
    """Encode payload dicts (or raw strings) as an SSE body ending in [DONE]."""
    lines = []
    for frame in frames:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {data}\n\n")
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def delta(content: str) -> dict:
    return {"choices": [{"delta": {"content": content}}]}


def sse_response(*frames, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=sse_body(*frames),
        headers={"content-type": "text/event-stream"},
    )


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class ChunkedByteStream(httpx.AsyncByteStream):
    """Response body delivered in the given raw pieces.

    With a ``gate`` the body stalls after the first piece until the event is set.
    """

    def __init__(self, pieces, gate: asyncio.Event | None = None):
        self.pieces = pieces
        self.gate = gate

    async def __aiter__(self):
        for position, piece in enumerate(self.pieces):
            yield piece
            if self.gate is not None and position == 0:
                await self.gate.wait()


def chunked_response(pieces, gate: asyncio.Event | None = None) -> httpx.Response:
    return httpx.Response(
        200,
        stream=ChunkedByteStream(pieces, gate),
        headers={"content-type": "text/event-stream"},
    )


@pytest.fixture
def vault(tmp_path):
    return FileVault(tmp_path)


@pytest.fixture
def provider():
    return LLMProvider(
        id="provider-a",
        name="Provider A",
        base_url="https://llm.test/v1/",
        api_key="sk-test-1234",
        default_model="model-a",
    )


@pytest.fixture
def settings(provider):
    return MianixSettings(
        providers=[provider],
        defaults=ModelDefaults(text=ModelReference(provider_id=provider.id, model="model-a")),
    )


@pytest.fixture
def sse():
    return sse_response


@pytest.fixture
def http_factory():
    return mock_http


@pytest.fixture
def chunked():
    return chunked_response
