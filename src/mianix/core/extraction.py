"""
Background extraction of long-term memories.

After each assistant turn a cheap model is asked to list the facts worth
remembering. Extraction is best-effort enrichment: every failure is
logged and turns into an empty result, and scheduled runs never block or
fail the chat turn that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING, Any

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import PromptTemplate
from pydantic import BaseModel, Field, ValidationError

from ..errors import MianixError
from ..providers.models import ModelOverrides
from ..providers.resolver import require_provider
from ..utils.logging import elapsed_ms, log_context
from .models import MemoryEntry, MemoryType

if TYPE_CHECKING:
    from ..configs import MianixSettings
    from ..llm.client import CompletionClient
    from .memory import MemoryStore

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.1

EXTRACTION_PROMPT = """Phân tích đoạn hội thoại sau và trích xuất các thông tin quan trọng cần ghi nhớ.

Chỉ trích xuất những thông tin có giá trị lâu dài như:
- Sự thật về người dùng (tên, tuổi, nghề nghiệp, sở thích)
- Sự kiện quan trọng đã xảy ra
- Mối quan hệ giữa các nhân vật
- Quyết định hoặc cam kết của người dùng

KHÔNG trích xuất những thông tin tạm thời như cảm xúc nhất thời, câu hỏi đơn giản.

User: {user_message}
AI: {ai_message}

Trả về JSON array (KHÔNG dùng markdown code block):
[{{"content": "mô tả ngắn gọn", "type": "fact|event|preference|relationship", "importance": 0.1-1.0}}]

Nếu không có thông tin quan trọng nào, trả về: []"""

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


class ExtractedMemory(BaseModel):
    content: str
    type: MemoryType
    importance: float = Field(ge=0.0, le=1.0)


def parse_extraction(response: str) -> list[ExtractedMemory]:
    """Parse the model's JSON array, dropping items that fail validation."""
    parser = JsonOutputParser()
    try:
        parsed: Any = parser.parse(response)
    except OutputParserException:
        match = _JSON_ARRAY.search(response)
        if not match:
            logger.warning("Failed to parse extraction response: %r", response[:200])
            return []
        try:
            parsed = parser.parse(match.group(0))
        except OutputParserException:
            logger.warning("Failed to parse extraction response: %r", response[:200])
            return []

    if not isinstance(parsed, list):
        return []

    memories = []
    for item in parsed:
        try:
            memories.append(ExtractedMemory.model_validate(item))
        except ValidationError:
            logger.debug("Dropping invalid extracted memory: %r", item)
    return memories


class MemoryExtractor:
    """Extracts memories with the model resolved for the ``extraction`` class."""

    def __init__(
        self,
        settings: "MianixSettings",
        client: "CompletionClient",
        *,
        override: ModelOverrides | None = None,
    ):
        self.settings = settings
        self.client = client
        self.override = override
        self.prompt = PromptTemplate.from_template(EXTRACTION_PROMPT)
        self._tasks: set[asyncio.Task[list[MemoryEntry]]] = set()

    async def extract(
        self, user_message: str, ai_message: str, source_message_id: str
    ) -> list[MemoryEntry]:
        start = time.perf_counter()
        try:
            resolved = require_provider(self.settings, "extraction", self.override)
            prompt = self.prompt.format(user_message=user_message, ai_message=ai_message)
            result = await self.client.complete(
                resolved,
                [{"role": "user", "content": prompt}],
                temperature=EXTRACTION_TEMPERATURE,
            )
        except MianixError:
            logger.exception(
                "Memory extraction failed",
                extra=log_context("extraction", duration_ms=elapsed_ms(start)),
            )
            return []

        entries = [
            MemoryEntry.from_content(item.content, item.type, item.importance, source_message_id)
            for item in parse_extraction(result.content or "[]")
        ]
        logger.info(
            "Extracted %s memories",
            len(entries),
            extra=log_context(
                "extraction", provider_id=result.provider_id, duration_ms=elapsed_ms(start)
            ),
        )
        return entries

    async def extract_and_store(
        self,
        store: "MemoryStore",
        user_message: str,
        ai_message: str,
        source_message_id: str,
    ) -> list[MemoryEntry]:
        try:
            entries = await self.extract(user_message, ai_message, source_message_id)
            if entries:
                await store.add_memories(entries)
            return entries
        except Exception:
            logger.exception("Background memory extraction failed for %s", source_message_id)
            return []

    def schedule(
        self,
        store: "MemoryStore",
        user_message: str,
        ai_message: str,
        source_message_id: str,
    ) -> asyncio.Task[list[MemoryEntry]]:
        """Run extraction in the background; the caller does not await it."""
        task = asyncio.create_task(
            self.extract_and_store(store, user_message, ai_message, source_message_id),
            name=f"memory-extraction-{source_message_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all scheduled extractions to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
