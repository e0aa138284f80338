"""
Director pass for POV-constrained narration.

Before the narrator streams its reply, an omniscient director model decides
what happens next as observable actions only. Its output is then filtered
for the selected point of view and handed to the narrator as scene
direction plus POV rules.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..llm.sse import ChatMessage, CompletionResult
from ..providers.models import ModelOverrides
from ..providers.resolver import require_provider
from ..utils.logging import elapsed_ms, log_context
from .context import DirectorContext, LLMContext, PromptPresets, recent_history
from .models import CharacterCard, DialogueMessage, POVMode, POVOptions

if TYPE_CHECKING:
    from ..configs import MianixSettings
    from ..llm.client import CompletionClient

logger = logging.getLogger(__name__)

DIRECTOR_TEMPERATURE = 0.7
DIRECTOR_MAX_TOKENS = 200

_SECRET = re.compile(r"\[secret\]([\s\S]*?)\[/secret\]")


@dataclass(frozen=True)
class SecretsResult:
    public_content: str
    secrets_note: str = ""


def handle_secrets(content: str) -> SecretsResult:
    """Remove ``[secret]...[/secret]`` blocks, leaving a note of how many existed."""
    count = len(_SECRET.findall(content))
    public = _SECRET.sub("", content).strip()
    note = (
        f"\n(Note: {count} secret thought(s) exist but are hidden from other characters)"
        if count
        else ""
    )
    return SecretsResult(public_content=public, secrets_note=note)


def _fixed_rules(name: str) -> str:
    return (
        f"\n## POV Rules (Fixed - {name})\n"
        f"- Write from {name}'s perspective ONLY\n"
        "- You CANNOT know what others are thinking\n"
        f"- You can only describe what {name} observes\n"
        "- Other characters' motivations are hidden from you\n"
        "- React only to observable actions and spoken words"
    )


def _switchable_rules(name: str) -> str:
    return (
        f"\n## POV Rules (Switchable - {name})\n"
        f"- Write from {name}'s perspective ONLY\n"
        "- You CANNOT know what others are thinking\n"
        f"- Describe only what {name} can observe\n"
        "- Hidden information stays hidden until revealed through action"
    )


def _any_rules(name: str) -> str:
    return (
        "\n## POV Rules (Any - Multi-Perspective)\n"
        "You may write from multiple character perspectives with STRICT boundaries:\n"
        "\n### Marker Format\n"
        "Use clear POV markers for each perspective shift:\n"
        "> [Character's POV] their experience...\n"
        "\n### CRITICAL RULES\n"
        "1. One paragraph = one character's POV only\n"
        "2. Character A CANNOT react to Character B's internal thoughts\n"
        "3. Thoughts stay private until expressed through action/dialogue\n"
        "4. Separate each perspective with the marker format above\n"
        "\n### Example Format\n"
        f"> [{name}'s POV] *She noticed the tension in his shoulders...*\n"
        "\n> [Other's POV] *He kept his expression neutral, aware of her scrutiny...*\n"
        f'\n{name} asked, "Everything alright?"'
    )


def pov_rules(pov: POVOptions, character: CharacterCard) -> str:
    if pov.mode is POVMode.FIXED:
        return _fixed_rules(character.name)
    if pov.mode is POVMode.SWITCHABLE:
        pov_id = pov.character_id or character.id
        # Only the main character's name is known here
        name = character.name if pov_id == character.id else f"Character {pov_id}"
        return _switchable_rules(name)
    return _any_rules(character.name)


def filter_for_pov(
    director_output: str, pov: POVOptions | None, character: CharacterCard
) -> DirectorContext:
    """Narrator-facing view of the director output for the selected POV.

    Secret blocks never reach the narrator. Without a POV the output passes
    through with no rules.
    """
    secrets = handle_secrets(director_output)
    instructions = secrets.public_content + secrets.secrets_note
    if pov is None:
        return DirectorContext(instructions=instructions)
    return DirectorContext(instructions=instructions, pov_rules=pov_rules(pov, character))


def build_director_system_prompt(
    character: CharacterCard,
    presets: PromptPresets,
    context: LLMContext | None = None,
) -> str:
    context = context or LLMContext()
    parts = [presets.director_prompt]

    if context.lorebook_context:
        parts.append("\n\n---\n## World Information\n")
        parts.append(context.lorebook_context)

    parts.append("\n\n---\n## Characters\n")
    parts.append(f"**{character.name}:** {character.description}")
    if character.personality:
        parts.append(f"\nPersonality: {character.personality}")

    if context.relevant_memories:
        parts.append("\n\n---\n## Story Context\n")
        parts.append(context.relevant_memories)

    return "".join(parts)


def build_director_user_prompt(
    character: CharacterCard, history: Sequence[DialogueMessage]
) -> str:
    parts = []
    recent = recent_history(history)
    if recent:
        parts.append("## Recent Events\n")
        for message in recent:
            speaker = "User" if message.role == "user" else character.name
            parts.append(f"**{speaker}:** {message.content}\n")

    parts.append("\n---\n## Direction Request\n")
    parts.append("Describe what happens next in this scene. Focus on:")
    parts.append("\n- Physical actions and movements")
    parts.append("\n- Dialogue spoken aloud")
    parts.append("\n- Environmental details and events")
    parts.append("\n\n**Keep it concise (50-100 words). No internal thoughts.**")
    return "".join(parts)


class DirectorService:
    """Generates scene instructions with the model resolved for ``text``."""

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

    def build_messages(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        presets: PromptPresets,
        context: LLMContext | None = None,
    ) -> list[ChatMessage]:
        system = build_director_system_prompt(character, presets, context)
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": build_director_user_prompt(character, history)},
        ]

    async def generate_scene_instructions(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        presets: PromptPresets,
        context: LLMContext | None = None,
    ) -> CompletionResult:
        """
        Ask the director what happens next.

        Raises:
            ConfigurationError: No text provider is configured
            ProviderError, NetworkError, ProtocolError: The request failed
        """
        resolved = require_provider(self.settings, "text", self.override)
        start = time.perf_counter()
        result = await self.client.complete(
            resolved,
            self.build_messages(character, history, presets, context),
            temperature=DIRECTOR_TEMPERATURE,
            max_tokens=DIRECTOR_MAX_TOKENS,
        )
        logger.info(
            "Director produced %s chars",
            len(result.content),
            extra=log_context(
                "director", provider_id=result.provider_id, duration_ms=elapsed_ms(start)
            ),
        )
        return result

    async def direct(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        presets: PromptPresets,
        context: LLMContext | None,
        pov: POVOptions,
    ) -> DirectorContext:
        result = await self.generate_scene_instructions(character, history, presets, context)
        return filter_for_pov(result.content, pov, character)
