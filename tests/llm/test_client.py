import asyncio
import json
import sys

import httpx
import pytest

from mianix.errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    ProtocolError,
    ProviderError,
    StreamCancelledError,
)
from mianix.llm.client import CompletionClient, StreamState
from mianix.llm.sse import StreamAccumulator, TokenUsage, parse_data_line
from mianix.providers.models import AuthHeaderKind, LLMProvider
from mianix.providers.resolver import ResolvedProvider

MESSAGES = [{"role": "user", "content": "hi"}]


def _delta(content):
    return {"choices": [{"delta": {"content": content}}]}


@pytest.fixture
def resolved(provider):
    return ResolvedProvider(provider=provider, model="model-a")


class Recorder:
    def __init__(self):
        self.chunks = []

    def __call__(self, chunk, done):
        self.chunks.append((chunk, done))


class TestStreamAccumulator:
    def test_parse_data_line(self):
        assert parse_data_line("data: {}") == "{}"
        assert parse_data_line("data:{}") == "{}"
        assert parse_data_line(": keep-alive") is None
        assert parse_data_line("event: message") is None

    def test_feed_collects_content_and_usage(self):
        acc = StreamAccumulator()
        assert acc.feed('data: {"choices":[{"delta":{"content":"Hel"}}]}') == "Hel"
        assert acc.feed("") == ""
        assert acc.feed("data: {broken") == ""
        assert acc.feed('data: {"choices":[],"usage":{"prompt_tokens":3,"completion_tokens":1}}') == ""
        assert acc.feed("data: [DONE]") == ""
        assert acc.feed('data: {"choices":[{"delta":{"content":"late"}}]}') == ""
        assert acc.content == "Hel"
        assert acc.skipped_frames == 1
        assert acc.done
        assert acc.usage == TokenUsage(prompt_tokens=3, completion_tokens=1, total_tokens=4)

    def test_google_usage_metadata(self):
        usage = TokenUsage.from_payload(
            {"usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 7, "totalTokenCount": 12}}
        )
        assert usage == TokenUsage(prompt_tokens=5, completion_tokens=7, total_tokens=12)


@pytest.mark.asyncio
async def test_stream_chat_delivers_chunks_in_order(resolved, sse, http_factory):
    requests = []

    def handler(request):
        requests.append(request)
        return sse(_delta("Hel"), _delta("lo"))

    recorder = Recorder()
    async with CompletionClient(http_factory(handler)) as client:
        result = await client.stream_chat(resolved, MESSAGES, recorder, temperature=0.8, top_p=0.9)

    assert recorder.chunks == [("Hel", False), ("lo", False), ("", True)]
    assert result.content == "Hello"
    assert result.provider_id == "provider-a"
    assert result.usage is None

    request = requests[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test-1234"
    body = json.loads(request.content)
    assert body["stream"] is True
    assert body["model"] == "model-a"
    assert body["top_p"] == 0.9
    assert body["messages"] == MESSAGES


@pytest.mark.asyncio
async def test_stream_reports_usage_and_skips_bad_frames(resolved, sse, http_factory):
    usage = {"choices": [], "usage": {"prompt_tokens": 10, "completion_tokens": 2, "total_tokens": 12}}
    client = CompletionClient(http_factory(lambda request: sse(_delta("Hi"), "{oops", usage)))
    recorder = Recorder()

    result = await client.stream_chat(resolved, MESSAGES, recorder, temperature=0.8)

    assert recorder.chunks == [("Hi", False), ("", True)]
    assert result.usage == TokenUsage(prompt_tokens=10, completion_tokens=2, total_tokens=12)


@pytest.mark.asyncio
async def test_async_chunk_callback(resolved, sse, http_factory):
    seen = []

    async def on_chunk(chunk, done):
        seen.append(chunk)

    client = CompletionClient(http_factory(lambda request: sse(_delta("a"), _delta("b"))))
    await client.stream_chat(resolved, MESSAGES, on_chunk, temperature=0.8)
    assert seen == ["a", "b", ""]


@pytest.mark.asyncio
async def test_google_provider_sends_only_goog_header(sse, http_factory):
    captured = {}

    def handler(request):
        captured.update(request.headers)
        return sse(_delta("ok"))

    google = LLMProvider(
        id="g",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        api_key="goog-key",
        auth_header=AuthHeaderKind.X_GOOG_API_KEY,
    )
    client = CompletionClient(http_factory(handler))
    await client.stream_chat(ResolvedProvider(google, "gemini"), MESSAGES, Recorder(), temperature=0.8)

    assert captured["x-goog-api-key"] == "goog-key"
    assert "authorization" not in captured


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_type",
    [(401, AuthError), (403, AuthError), (404, NotFoundError), (500, ProviderError)],
)
async def test_error_status_maps_to_error_type(resolved, http_factory, status, error_type):
    client = CompletionClient(http_factory(lambda request: httpx.Response(status, text="nope")))
    stream = client.open_stream(resolved, MESSAGES, temperature=0.8)
    recorder = Recorder()

    with pytest.raises(error_type) as exc_info:
        await stream.run(recorder)

    assert exc_info.value.status_code == status
    assert exc_info.value.body == "nope"
    assert exc_info.value.provider_id == "provider-a"
    assert stream.state is StreamState.FAILED
    assert recorder.chunks == []


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(resolved, http_factory):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    stream = CompletionClient(http_factory(handler)).open_stream(resolved, MESSAGES, temperature=0.8)
    with pytest.raises(NetworkError) as exc_info:
        await stream.run(Recorder())
    assert isinstance(exc_info.value.original_error, httpx.ConnectError)
    assert stream.state is StreamState.FAILED


@pytest.mark.asyncio
async def test_cancel_from_callback_stops_stream(resolved, sse, http_factory):
    client = CompletionClient(http_factory(lambda request: sse(_delta("a"), _delta("b"), _delta("c"))))
    stream = client.open_stream(resolved, MESSAGES, temperature=0.8)
    chunks = []

    def on_chunk(chunk, done):
        chunks.append((chunk, done))
        stream.cancel()

    with pytest.raises(StreamCancelledError):
        await stream.run(on_chunk)
    assert chunks == [("a", False)]
    assert stream.state is StreamState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_before_run(resolved, sse, http_factory):
    requests = []

    def handler(request):
        requests.append(request)
        return sse(_delta("a"))

    stream = CompletionClient(http_factory(handler)).open_stream(resolved, MESSAGES, temperature=0.8)
    stream.cancel()
    with pytest.raises(StreamCancelledError):
        await stream.run(Recorder())
    assert requests == []


@pytest.mark.asyncio
async def test_stream_runs_once(resolved, sse, http_factory):
    stream = CompletionClient(http_factory(lambda request: sse(_delta("a")))).open_stream(
        resolved, MESSAGES, temperature=0.8
    )
    await stream.run(Recorder())
    assert stream.state is StreamState.COMPLETED
    stream.cancel()
    assert stream.state is StreamState.COMPLETED
    with pytest.raises(RuntimeError):
        await stream.run(Recorder())


@pytest.mark.asyncio
async def test_json_response_to_stream_request(resolved, http_factory):
    payload = {
        "choices": [{"message": {"role": "assistant", "content": "Whole reply"}}],
        "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6},
    }
    client = CompletionClient(http_factory(lambda request: httpx.Response(200, json=payload)))
    recorder = Recorder()

    result = await client.stream_chat(resolved, MESSAGES, recorder, temperature=0.8)

    assert recorder.chunks == [("Whole reply", False), ("", True)]
    assert result.usage.total_tokens == 6


@pytest.mark.asyncio
async def test_complete_returns_message(resolved, http_factory):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "[]"}}]})

    result = await CompletionClient(http_factory(handler)).complete(
        resolved, MESSAGES, temperature=0.1
    )
    assert result.content == "[]"
    assert bodies[0]["stream"] is False
    assert bodies[0]["temperature"] == 0.1


@pytest.mark.asyncio
async def test_complete_errors(resolved, http_factory):
    client = CompletionClient(http_factory(lambda request: httpx.Response(200, json={"choices": []})))
    with pytest.raises(ProtocolError):
        await client.complete(resolved, MESSAGES, temperature=0.1)

    client = CompletionClient(http_factory(lambda request: httpx.Response(200, text="<html>")))
    with pytest.raises(ProtocolError):
        await client.complete(resolved, MESSAGES, temperature=0.1)

    client = CompletionClient(http_factory(lambda request: httpx.Response(401, text="bad key")))
    with pytest.raises(AuthError):
        await client.complete(resolved, MESSAGES, temperature=0.1)


@pytest.mark.asyncio
async def test_stream_without_done_marker_still_completes(resolved, http_factory):
    body = b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
    client = CompletionClient(
        http_factory(
            lambda request: httpx.Response(
                200, content=body, headers={"content-type": "text/event-stream"}
            )
        )
    )
    stream = client.open_stream(resolved, MESSAGES, temperature=0.8)
    recorder = Recorder()

    result = await stream.run(recorder)

    assert recorder.chunks == [("Hi", False), ("", True)]
    assert result.content == "Hi"
    assert stream.state is StreamState.COMPLETED


@pytest.mark.asyncio
async def test_frames_split_across_network_chunks(resolved, chunked, http_factory):
    pieces = [
        b'data: {"choices":[{"delta":{"content":"Hel',
        b'lo"}}]}\n',
        b'\ndata: {"choices":[{"delta":{"content":" ch\xc3',
        b'\xa0o"}}]}\n\ndata: [DO',
        b"NE]\n\n",
    ]
    client = CompletionClient(http_factory(lambda request: chunked(pieces)))
    recorder = Recorder()

    result = await client.stream_chat(resolved, MESSAGES, recorder, temperature=0.8)

    assert recorder.chunks == [("Hello", False), (" chào", False), ("", True)]
    assert result.content == "Hello chào"


@pytest.mark.asyncio
async def test_cancel_from_another_task(resolved, chunked, http_factory):
    gate = asyncio.Event()
    pieces = [
        b'data: {"choices":[{"delta":{"content":"a"}}]}\n\n',
        b'data: {"choices":[{"delta":{"content":"b"}}]}\n\n',
    ]
    client = CompletionClient(http_factory(lambda request: chunked(pieces, gate)))
    stream = client.open_stream(resolved, MESSAGES, temperature=0.8)
    first_chunk = asyncio.Event()
    chunks = []

    def on_chunk(chunk, done):
        chunks.append((chunk, done))
        first_chunk.set()

    task = asyncio.create_task(stream.run(on_chunk))
    await first_chunk.wait()
    stream.cancel()

    with pytest.raises(StreamCancelledError):
        await task
    assert chunks == [("a", False)]
    assert stream.state is StreamState.CANCELLED
    assert not task.cancelled()
    if sys.version_info >= (3, 11):
        assert task.cancelling() == 0


@pytest.mark.asyncio
async def test_foreign_task_cancellation_is_not_converted(resolved, chunked, http_factory):
    gate = asyncio.Event()
    pieces = [b'data: {"choices":[{"delta":{"content":"a"}}]}\n\n', b"data: [DONE]\n\n"]
    client = CompletionClient(http_factory(lambda request: chunked(pieces, gate)))
    stream = client.open_stream(resolved, MESSAGES, temperature=0.8)
    first_chunk = asyncio.Event()

    task = asyncio.create_task(stream.run(lambda chunk, done: first_chunk.set()))
    await first_chunk.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert stream.state is StreamState.CANCELLED


@pytest.mark.asyncio
async def test_complete_sends_max_tokens(resolved, http_factory):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = CompletionClient(http_factory(handler))
    await client.complete(resolved, MESSAGES, temperature=0.7, max_tokens=200)
    await client.complete(resolved, MESSAGES, temperature=0.7)
    assert bodies[0]["max_tokens"] == 200
    assert "max_tokens" not in bodies[1]
