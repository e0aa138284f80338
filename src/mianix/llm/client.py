"""
Streaming chat completion client for OpenAI-compatible providers.

Each request moves through ``IDLE -> SENT -> STREAMING`` and ends in
``COMPLETED``, ``FAILED`` or ``CANCELLED``.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

import httpx

from ..errors import (
    MianixError,
    NetworkError,
    ProtocolError,
    StreamCancelledError,
    error_for_status,
)
from ..providers.resolver import ResolvedProvider, build_headers
from ..utils.logging import elapsed_ms, log_context
from .sse import ChatMessage, CompletionResult, StreamAccumulator, TokenUsage, message_content

logger = logging.getLogger(__name__)

OnChunk = Callable[[str, bool], Awaitable[None] | None]


class StreamState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = {StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED}


async def _emit(on_chunk: OnChunk, chunk: str, done: bool) -> None:
    result = on_chunk(chunk, done)
    if inspect.isawaitable(result):
        await result


def _uncancel(task: asyncio.Task[Any] | None) -> None:
    if task is not None and hasattr(task, "uncancel") and task.cancelling():
        task.uncancel()


def _completions_url(resolved: ResolvedProvider) -> str:
    return f"{resolved.provider.base_url}/chat/completions"


class ChatStream:
    """One streaming completion request.

    Call :meth:`run` once. :meth:`cancel` may be called from anywhere on the
    same event loop, including from the chunk callback.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        resolved: ResolvedProvider,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        top_p: float | None = None,
    ) -> None:
        self._http = http_client
        self.resolved = resolved
        self.messages = list(messages)
        self.temperature = temperature
        self.top_p = top_p
        self.state = StreamState.IDLE
        self._cancel_requested = asyncio.Event()
        self._task: asyncio.Task[Any] | None = None

    def request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.resolved.model,
            "messages": self.messages,
            "stream": True,
            "temperature": self.temperature,
            # Inline usage on the final frame, where the provider supports it
            "stream_options": {"include_usage": True},
        }
        if self.top_p is not None:
            body["top_p"] = self.top_p
        return body

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    def cancel(self) -> None:
        if self.state in _TERMINAL:
            return
        self._cancel_requested.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def run(self, on_chunk: OnChunk) -> CompletionResult:
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"ChatStream already used (state={self.state.value})")
        self._task = asyncio.current_task()
        start = time.perf_counter()
        accumulator = StreamAccumulator()
        provider_id = self.resolved.provider_id

        try:
            self._raise_if_cancelled()
            self.state = StreamState.SENT
            async with self._http.stream(
                "POST",
                _completions_url(self.resolved),
                json=self.request_body(),
                headers=build_headers(self.resolved.provider),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise error_for_status(response.status_code, body, provider_id)

                self.state = StreamState.STREAMING
                if response.headers.get("content-type", "").startswith("application/json"):
                    # Provider ignored stream=true and sent a whole response.
                    await self._consume_json(response, accumulator, on_chunk)
                else:
                    async for line in response.aiter_lines():
                        self._raise_if_cancelled()
                        delta = accumulator.feed(line)
                        if delta:
                            await _emit(on_chunk, delta, False)
                        if accumulator.done:
                            break
                self._raise_if_cancelled()
            await _emit(on_chunk, "", True)
        except asyncio.CancelledError:
            self.state = StreamState.CANCELLED
            logger.info(
                "Stream cancelled",
                extra=log_context("llm", provider_id=provider_id, duration_ms=elapsed_ms(start)),
            )
            if self.cancelled:
                # The task.cancel() issued by cancel() is consumed here
                _uncancel(self._task)
                raise StreamCancelledError("Generation was cancelled") from None
            raise
        except StreamCancelledError:
            self.state = StreamState.CANCELLED
            logger.info(
                "Stream cancelled",
                extra=log_context("llm", provider_id=provider_id, duration_ms=elapsed_ms(start)),
            )
            raise
        except httpx.HTTPError as e:
            self.state = StreamState.FAILED
            raise NetworkError(f"Connection to provider failed: {e}", original_error=e) from e
        except MianixError:
            self.state = StreamState.FAILED
            raise

        self.state = StreamState.COMPLETED
        logger.info(
            "Stream completed chars=%s skipped_frames=%s",
            len(accumulator.content),
            accumulator.skipped_frames,
            extra=log_context(
                "llm",
                provider_id=provider_id,
                duration_ms=elapsed_ms(start),
                model=self.resolved.model,
            ),
        )
        return CompletionResult(
            content=accumulator.content,
            usage=accumulator.usage,
            provider_id=provider_id,
            model=self.resolved.model,
        )

    def _raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StreamCancelledError("Generation was cancelled")

    async def _consume_json(
        self,
        response: httpx.Response,
        accumulator: StreamAccumulator,
        on_chunk: OnChunk,
    ) -> None:
        payload = _decode_json(await response.aread())
        content = message_content(payload)
        if content is None:
            raise ProtocolError("Response has no choices[0].message.content")
        usage = TokenUsage.from_payload(payload)
        if usage is not None:
            accumulator.usage = usage
        accumulator.append(content)
        if content:
            await _emit(on_chunk, content, False)


def _decode_json(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Provider returned invalid JSON: {raw[:200]!r}") from e


class CompletionClient:
    """Issues chat completion requests against a resolved provider."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 120.0,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    def open_stream(
        self,
        resolved: ResolvedProvider,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        top_p: float | None = None,
    ) -> ChatStream:
        return ChatStream(
            self._http, resolved, messages, temperature=temperature, top_p=top_p
        )

    async def stream_chat(
        self,
        resolved: ResolvedProvider,
        messages: Sequence[ChatMessage],
        on_chunk: OnChunk,
        *,
        temperature: float,
        top_p: float | None = None,
    ) -> CompletionResult:
        stream = self.open_stream(resolved, messages, temperature=temperature, top_p=top_p)
        return await stream.run(on_chunk)

    async def complete(
        self,
        resolved: ResolvedProvider,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """Non-streaming completion, used for extraction and director calls."""
        body: dict[str, Any] = {
            "model": resolved.model,
            "messages": list(messages),
            "stream": False,
            "temperature": temperature,
        }
        if top_p is not None:
            body["top_p"] = top_p
        if max_tokens is not None:
            body["max_tokens"] = max_tokens

        start = time.perf_counter()
        try:
            response = await self._http.post(
                _completions_url(resolved),
                json=body,
                headers=build_headers(resolved.provider),
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Connection to provider failed: {e}", original_error=e) from e

        if not response.is_success:
            raise error_for_status(response.status_code, response.text, resolved.provider_id)

        payload = _decode_json(response.content)
        content = message_content(payload)
        if content is None:
            raise ProtocolError("Response has no choices[0].message.content")

        logger.debug(
            "Completion finished chars=%s",
            len(content),
            extra=log_context(
                "llm",
                provider_id=resolved.provider_id,
                duration_ms=elapsed_ms(start),
                model=resolved.model,
            ),
        )
        return CompletionResult(
            content=content,
            usage=TokenUsage.from_payload(payload),
            provider_id=resolved.provider_id,
            model=resolved.model,
        )
