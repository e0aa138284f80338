from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import uuid

from .configs import VAULT_ENV, MianixSettings, settings_from_env
from .errors import ConfigurationError, MianixError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mianix")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--settings", help="Path to data.json (default: $MIANIX_SETTINGS)")
    parser.add_argument("--vault", help="Vault root folder (default: $MIANIX_VAULT)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("models", help="List models of every configured provider")

    chat = sub.add_parser("chat", help="Stream one reply from a character")
    chat.add_argument("character", help="Vault-relative character folder")
    chat.add_argument("message", help="User message")
    chat.add_argument(
        "--pov",
        choices=["fixed", "switchable", "any"],
        help="Run the director pass and narrate from this point of view",
    )

    lorebook = sub.add_parser("lorebook", help="Show lorebook entries activated by text")
    lorebook.add_argument("character", help="Vault-relative character folder")
    lorebook.add_argument("text", help="Text to scan")
    return parser


def _vault_root(args: argparse.Namespace) -> str:
    root = args.vault or os.getenv(VAULT_ENV)
    if not root:
        raise ConfigurationError(f"No vault given; pass --vault or set {VAULT_ENV}")
    return root


async def _list_models(settings: MianixSettings) -> int:
    from .providers.fetcher import ModelFetcher

    if not settings.providers:
        raise ConfigurationError("No LLM provider configured. Please add a provider in settings.")
    fetcher = ModelFetcher()
    for provider in settings.providers:
        print(f"{provider.name or provider.id}:")
        for model in await fetcher.fetch_models(provider):
            print(f"  {model.id}")
    return 0


async def _chat(
    settings: MianixSettings,
    vault_root: str,
    character: str,
    message: str,
    pov: str | None = None,
) -> int:
    from .core.models import DialogueMessage, POVOptions
    from .core.session import ChatSession
    from .llm.client import CompletionClient
    from .store.file_vault import FileVault
    from .store.repositories import CharacterRepository

    vault = FileVault(vault_root)
    card = await CharacterRepository(vault).load_card(character)
    history = [DialogueMessage(id=str(uuid.uuid4()), role="user", content=message)]

    def on_chunk(chunk: str, done: bool) -> None:
        sys.stdout.write("\n" if done else chunk)
        sys.stdout.flush()

    async with CompletionClient(timeout=settings.request_timeout) as client:
        session = ChatSession(settings, vault, card, client)
        try:
            result = await session.send(
                history, on_chunk, pov=POVOptions(mode=pov) if pov else None
            )
        finally:
            await session.close()
    if result.completion.usage:
        usage = result.completion.usage
        print(
            f"[{result.completion.model}] tokens: prompt={usage.prompt_tokens} "
            f"completion={usage.completion_tokens} total={usage.total_tokens}",
            file=sys.stderr,
        )
    return 0


async def _lorebook(settings: MianixSettings, vault_root: str, character: str, text: str) -> int:
    from .core.lorebook import LorebookSelector, format_lorebook_context
    from .store.file_vault import FileVault
    from .store.repositories import LorebookRepository

    selector = LorebookSelector(LorebookRepository(FileVault(vault_root)))
    entries = await selector.get_active_entries(character, [text], settings.lorebook_scan_depth)
    print(format_lorebook_context(entries) or "(no active entries)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            from importlib.metadata import version

            print(version("mianix-roleplay"))
        except Exception:
            print("mianix")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        settings = settings_from_env(args.settings)
        if args.command == "models":
            return asyncio.run(_list_models(settings))
        if args.command == "chat":
            return asyncio.run(
                _chat(settings, _vault_root(args), args.character, args.message, args.pov)
            )
        return asyncio.run(_lorebook(settings, _vault_root(args), args.character, args.text))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except MianixError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
