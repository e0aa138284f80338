"""Server-Sent-Events frame parsing for chat completion streams."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, TypedDict

from ..errors import PartialDataWarning

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenUsage | None":
        """Read OpenAI-style ``usage`` or Google-style ``usageMetadata``."""
        if not isinstance(payload, dict):
            return None
        usage = payload.get("usage")
        if isinstance(usage, dict):
            prompt = usage.get("prompt_tokens")
            completion = usage.get("completion_tokens")
            total = usage.get("total_tokens")
        else:
            usage = payload.get("usageMetadata")
            if not isinstance(usage, dict):
                return None
            prompt = usage.get("promptTokenCount")
            completion = usage.get("candidatesTokenCount")
            total = usage.get("totalTokenCount")
        prompt = int(prompt or 0)
        completion = int(completion or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(total) if total is not None else prompt + completion,
        )


@dataclass(frozen=True)
class CompletionResult:
    content: str
    usage: TokenUsage | None
    provider_id: str
    model: str


def parse_data_line(line: str) -> str | None:
    """Return the payload of a ``data:`` line, or None for any other line."""
    line = line.rstrip("\r")
    if not line.startswith("data:"):
        return None
    payload = line[len("data:") :]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def _first_choice(payload: dict[str, Any]) -> dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def delta_content(payload: Any) -> str:
    """``choices[0].delta.content`` of a stream frame, or empty string."""
    if not isinstance(payload, dict):
        return ""
    delta = _first_choice(payload).get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def message_content(payload: Any) -> str | None:
    """``choices[0].message.content`` of a non-streaming response."""
    if not isinstance(payload, dict):
        return None
    message = _first_choice(payload).get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if content is None:
        return ""
    return content if isinstance(content, str) else None


class StreamAccumulator:
    """
    Folds stream lines into content and usage.

    Usage is last-write-wins since providers usually report it only on
    the final frame. Frames that are not valid JSON are skipped.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self.usage: TokenUsage | None = None
        self.done = False
        self.skipped_frames = 0

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def feed(self, line: str) -> str:
        """Consume one line; return the content delta it carried, if any."""
        if self.done:
            return ""
        data = parse_data_line(line)
        if data is None:
            return ""
        if data.strip() == DONE_SENTINEL:
            self.done = True
            return ""
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            self.skipped_frames += 1
            logger.debug(
                "Skipping malformed stream frame: %r",
                data[:200],
                extra={"category": PartialDataWarning.__name__},
            )
            return ""

        usage = TokenUsage.from_payload(payload)
        if usage is not None:
            self.usage = usage

        content = delta_content(payload)
        if content:
            self._parts.append(content)
        return content

    def append(self, content: str) -> None:
        """Add content that arrived outside of a frame (whole JSON response)."""
        if content:
            self._parts.append(content)
