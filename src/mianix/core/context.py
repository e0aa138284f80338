"""
Prompt assembly.

The prompt is two messages. The system message carries persona, memories,
world info, stats and the character card; the user message carries the
reasoning guide, chat history and output format.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..constants import PRESETS_FOLDER, RECENT_MESSAGES_COUNT
from ..llm.sse import ChatMessage
from ..store.file_vault import normalize_path
from ..store.protocols import Vault
from .lorebook import LorebookSelector
from .memory import MemoryStore
from .models import CharacterCard, CharacterStats, DialogueMessage

logger = logging.getLogger(__name__)

RESPONSE_LENGTH_PLACEHOLDER = "${responseLength}"

DEFAULT_MULTI_MODE_PROMPT = (
    "## Roleplay\n"
    "Bạn là nhân vật được mô tả bên dưới. Luôn giữ đúng tính cách, giọng điệu và bối cảnh."
)
DEFAULT_CHAIN_OF_THOUGHT_PROMPT = (
    "## Suy nghĩ trước khi trả lời\n"
    "Xem lại lịch sử trò chuyện, ký ức và thông tin thế giới trước khi viết phản hồi."
)
DEFAULT_OUTPUT_STRUCTURE_PROMPT = (
    "## Cấu trúc đầu ra\nViết lời thoại và hành động của nhân vật bằng Markdown."
)
DEFAULT_OUTPUT_FORMAT_PROMPT = (
    "## Output Format Requirements\n"
    f"Phản hồi khoảng {RESPONSE_LENGTH_PLACEHOLDER} từ."
)

DEFAULT_DIRECTOR_PROMPT = """## Role: Story Director (Đạo Diễn Cảnh)

Bạn là đạo diễn toàn tri, biết mọi thứ về tất cả nhân vật.
Nhiệm vụ của bạn là quyết định **ĐIỀU GÌ XẢY RA**, không phải cách mô tả.

## Output Format
Mô tả cảnh dưới dạng:
- Hành động vật lý các nhân vật thực hiện
- Lời thoại được nói ra to
- Sự kiện môi trường (âm thanh, ánh sáng, thay đổi bối cảnh)

## QUY TẮC BẮT BUỘC
1. **KHÔNG BAO GIỜ** viết suy nghĩ nội tâm của bất kỳ nhân vật nào
2. **KHÔNG BAO GIỜ** tiết lộ động cơ ẩn giấu hay bí mật
3. Chỉ mô tả những gì có thể **QUAN SÁT ĐƯỢC**
4. Giữ mô tả ngắn gọn (50-100 từ)"""

PRESET_FILES = {
    "multi_mode_prompt": "multi-mode-prompt.md",
    "chain_of_thought_prompt": "chain-of-thought-prompt.md",
    "output_structure_prompt": "output-structure-prompt.md",
    "output_format_prompt": "output-format-prompt.md",
    "director_prompt": "director-prompt.md",
}


@dataclass(frozen=True)
class PromptPresets:
    multi_mode_prompt: str = DEFAULT_MULTI_MODE_PROMPT
    chain_of_thought_prompt: str = DEFAULT_CHAIN_OF_THOUGHT_PROMPT
    output_structure_prompt: str = DEFAULT_OUTPUT_STRUCTURE_PROMPT
    output_format_prompt: str = DEFAULT_OUTPUT_FORMAT_PROMPT
    director_prompt: str = DEFAULT_DIRECTOR_PROMPT


async def load_presets(vault: Vault, folder: str = PRESETS_FOLDER) -> PromptPresets:
    """Read preset files from the vault; missing or empty files keep the default."""
    values: dict[str, str] = {}
    for field_name, filename in PRESET_FILES.items():
        path = normalize_path(f"{folder}/{filename}")
        if await vault.exists(path):
            content = (await vault.read_text(path)).strip()
            if content:
                values[field_name] = content
    return PromptPresets(**values)


@dataclass(frozen=True)
class LLMContext:
    """Ranked context sections; an empty string means "omit the section"."""

    relevant_memories: str = ""
    lorebook_context: str = ""
    stats_context: str = ""


@dataclass(frozen=True)
class DirectorContext:
    instructions: str = ""
    pov_rules: str = ""


def recent_history(
    history: Sequence[DialogueMessage], count: int = RECENT_MESSAGES_COUNT
) -> list[DialogueMessage]:
    return list(history)[-count:] if count > 0 else []


def format_modifier(value: int) -> str:
    modifier = (value - 10) // 2
    return f"+{modifier}" if modifier >= 0 else str(modifier)


STAT_ABBREV = {
    "strength": "STR",
    "dexterity": "DEX",
    "constitution": "CON",
    "intelligence": "INT",
    "wisdom": "WIS",
    "charisma": "CHA",
}


def format_stats(stats: CharacterStats) -> str:
    lines = ["**Character Stats:**"]
    for key, value in stats.base_stats.items():
        lines.append(f"- {STAT_ABBREV.get(key, key.upper())}: {value} ({format_modifier(value)})")

    lines.append("")
    lines.append("**Resources:**")
    for key, resource in stats.derived_stats.items():
        if resource:
            lines.append(f"- {key.upper()}: {resource.current}/{resource.max}")

    if stats.conditions:
        lines.append("")
        lines.append(f"**Conditions:** {', '.join(stats.conditions)}")

    if stats.custom_stats:
        lines.append("")
        lines.append("**Custom Stats:**")
        for key, value in stats.custom_stats.items():
            lines.append(f"- {key}: {value}")

    return "\n".join(lines)


def build_system_prompt(
    character: CharacterCard,
    presets: PromptPresets,
    context: LLMContext | None = None,
    director: DirectorContext | None = None,
) -> str:
    context = context or LLMContext()
    parts = [presets.multi_mode_prompt]

    if director and director.instructions:
        parts.append("\n\n---\n## Scene Direction\n")
        parts.append("**What is happening in this scene:**\n")
        parts.append(director.instructions)
    if director and director.pov_rules:
        parts.append("\n\n---")
        parts.append(director.pov_rules)

    if context.relevant_memories:
        parts.append("\n\n---\n## Long-term Memory\n")
        parts.append("**Thông tin quan trọng từ các cuộc trò chuyện trước:**\n")
        parts.append(context.relevant_memories)

    if context.lorebook_context:
        parts.append("\n\n---\n## World Information\n")
        parts.append(context.lorebook_context)

    if context.stats_context:
        parts.append("\n\n---\n")
        parts.append(context.stats_context)

    parts.append("\n\n---\n## Character Information\n")
    parts.append(f"**Name:** {character.name}")
    if character.description:
        parts.append(f"\n**Description:** {character.description}")
    if character.personality:
        parts.append(f"\n**Personality:** {character.personality}")
    if character.scenario:
        parts.append(f"\n**Scenario:** {character.scenario}")

    return "".join(parts)


def build_user_prompt(
    character: CharacterCard,
    history: Sequence[DialogueMessage],
    presets: PromptPresets,
    response_length: int = 800,
) -> str:
    parts = [presets.chain_of_thought_prompt]

    parts.append("\n\n---\n")
    parts.append(presets.output_structure_prompt)

    if history:
        parts.append("\n\n---\n## Chat History\n")
        parts.append(
            "\n\n".join(
                f"**{'User' if message.role == 'user' else character.name}:** {message.content}"
                for message in history
            )
        )

    parts.append("\n\n---\n## Your Turn\n")
    parts.append(
        f"Hãy phản hồi với tư cách **{character.name}**, "
        "tiếp tục cuộc hội thoại một cách tự nhiên."
    )

    parts.append("\n\n---\n")
    parts.append(
        presets.output_format_prompt.replace(RESPONSE_LENGTH_PLACEHOLDER, str(response_length))
    )
    return "".join(parts)


def build_messages(
    character: CharacterCard,
    history: Sequence[DialogueMessage],
    presets: PromptPresets,
    context: LLMContext | None = None,
    director: DirectorContext | None = None,
    response_length: int = 800,
) -> list[ChatMessage]:
    return [
        {
            "role": "system",
            "content": build_system_prompt(character, presets, context, director),
        },
        {
            "role": "user",
            "content": build_user_prompt(character, history, presets, response_length),
        },
    ]


class ContextAssembler:
    """Gathers ranked context for one turn and builds the prompt."""

    def __init__(
        self,
        memory_store: MemoryStore,
        lorebook_selector: LorebookSelector,
        *,
        memory_limit: int,
        scan_depth: int,
    ):
        self.memory_store = memory_store
        self.lorebook_selector = lorebook_selector
        self.memory_limit = memory_limit
        self.scan_depth = scan_depth

    async def gather(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        stats: CharacterStats | None = None,
    ) -> LLMContext:
        query = next((m.content for m in reversed(history) if m.role == "user"), "")
        memories, lorebook = await asyncio.gather(
            self.memory_store.search_memories(query, self.memory_limit),
            self.lorebook_selector.get_context(
                character.folder_path,
                [message.content for message in history],
                self.scan_depth,
            ),
        )
        logger.debug(
            "context memories=%s lorebook=%s stats=%s",
            bool(memories),
            bool(lorebook),
            stats is not None,
        )
        return LLMContext(
            relevant_memories=memories,
            lorebook_context=lorebook,
            stats_context=format_stats(stats) if stats else "",
        )

    def build(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        presets: PromptPresets,
        context: LLMContext,
        *,
        director: DirectorContext | None = None,
        response_length: int = 800,
    ) -> list[ChatMessage]:
        """Prompt messages over the recent window of ``history``."""
        return build_messages(
            character, recent_history(history), presets, context, director, response_length
        )

    async def assemble(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        presets: PromptPresets,
        *,
        stats: CharacterStats | None = None,
        director: DirectorContext | None = None,
        response_length: int = 800,
    ) -> list[ChatMessage]:
        # Memories and world info are ranked against the whole history
        context = await self.gather(character, history, stats)
        return self.build(
            character,
            history,
            presets,
            context,
            director=director,
            response_length=response_length,
        )
