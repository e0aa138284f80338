from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from ..configs import LLMOptions, MianixSettings
from ..llm.client import ChatStream, CompletionClient, OnChunk
from ..llm.sse import CompletionResult
from ..providers.models import ModelOverrides
from ..providers.resolver import require_provider
from ..store.protocols import Vault
from ..store.repositories import CharacterRepository, LorebookRepository, MemoryIndexRepository
from .context import ContextAssembler, DirectorContext, PromptPresets, load_presets
from .director import DirectorService
from .extraction import MemoryExtractor
from .lorebook import LorebookSelector
from .memory import MemoryStore
from .models import CharacterCard, DialogueMessage, POVOptions

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    message: DialogueMessage
    completion: CompletionResult
    extraction_scheduled: bool = False
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    director: DirectorContext | None = None


class ChatSession:
    """
    One character dialogue.

    Owns exactly one memory store and one lorebook selector. A single
    generation may be in flight at a time; :meth:`cancel` aborts it.
    """

    def __init__(
        self,
        settings: MianixSettings,
        vault: Vault,
        character: CharacterCard,
        client: CompletionClient,
        *,
        override: ModelOverrides | None = None,
        presets: PromptPresets | None = None,
    ):
        self.settings = settings
        self.vault = vault
        self.character = character
        self.client = client
        self.override = override
        self.presets = presets
        self.memory_store = MemoryStore(MemoryIndexRepository(vault, character.folder_path))
        self.lorebook_selector = LorebookSelector(LorebookRepository(vault))
        self.assembler = ContextAssembler(
            self.memory_store,
            self.lorebook_selector,
            memory_limit=settings.memory_search_limit,
            scan_depth=settings.lorebook_scan_depth,
        )
        self.extractor = MemoryExtractor(settings, client, override=override)
        self.director = DirectorService(settings, client, override=override)
        self._stream: ChatStream | None = None
        self._busy = False
        self._cancel_pending = False

    @property
    def is_streaming(self) -> bool:
        return self._busy

    def cancel(self) -> None:
        if self._stream is not None:
            self._stream.cancel()
        elif self._busy:
            self._cancel_pending = True

    async def send(
        self,
        history: Sequence[DialogueMessage],
        on_chunk: OnChunk,
        options: LLMOptions | None = None,
        *,
        director: DirectorContext | None = None,
        pov: POVOptions | None = None,
    ) -> TurnResult:
        """
        Generate the assistant reply to the last user message in ``history``.

        With ``pov`` set and no ready-made ``director`` context, a director
        pass runs first and its filtered output steers the reply.

        Raises:
            ConfigurationError: No provider is configured
            StreamCancelledError: :meth:`cancel` was called mid-generation
            ProviderError, NetworkError: The request failed
        """
        if self._busy:
            raise RuntimeError("A generation is already in progress for this session")
        self._busy = True
        try:
            completion, director = await self._generate(
                history, on_chunk, options or LLMOptions(), director, pov
            )
        finally:
            self._busy = False
            self._cancel_pending = False
            self._stream = None

        return self._finish_turn(history, completion, director)

    async def _generate(
        self,
        history: Sequence[DialogueMessage],
        on_chunk: OnChunk,
        options: LLMOptions,
        director: DirectorContext | None,
        pov: POVOptions | None,
    ) -> tuple[CompletionResult, DirectorContext | None]:
        resolved = require_provider(self.settings, "text", self.override)

        presets = self.presets or await load_presets(self.vault)
        stats = None
        if self.settings.enable_stats:
            stats = await CharacterRepository(self.vault).load_stats(self.character.folder_path)
        context = await self.assembler.gather(self.character, history, stats)
        if director is None and pov is not None:
            director = await self.director.direct(self.character, history, presets, context, pov)
        messages = self.assembler.build(
            self.character,
            history,
            presets,
            context,
            director=director,
            response_length=options.response_length,
        )

        self._stream = self.client.open_stream(
            resolved, messages, temperature=options.temperature, top_p=options.top_p
        )
        if self._cancel_pending:
            self._stream.cancel()
        return await self._stream.run(on_chunk), director

    def _finish_turn(
        self,
        history: Sequence[DialogueMessage],
        completion: CompletionResult,
        director: DirectorContext | None = None,
    ) -> TurnResult:
        last_user = next((m for m in reversed(history) if m.role == "user"), None)
        reply = DialogueMessage(
            id=str(uuid.uuid4()),
            role="assistant",
            content=completion.content,
            parent_id=last_user.id if last_user else None,
        )

        scheduled = False
        if self.settings.enable_memory_extraction and last_user and completion.content:
            self.extractor.schedule(
                self.memory_store, last_user.content, reply.content, last_user.id
            )
            scheduled = True

        usage = completion.usage
        logger.info(
            "Turn finished provider=%s model=%s extraction=%s",
            completion.provider_id,
            completion.model,
            scheduled,
        )
        return TurnResult(
            message=reply,
            completion=completion,
            extraction_scheduled=scheduled,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            director=director,
        )

    async def close(self) -> None:
        self.cancel()
        await self.extractor.drain()
