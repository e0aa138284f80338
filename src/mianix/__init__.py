from __future__ import annotations

from .configs import LLMOptions, MianixSettings, load_settings, migrate_settings
from .errors import (
    AuthError,
    ConfigurationError,
    MianixError,
    NetworkError,
    NotFoundError,
    PartialDataWarning,
    ProtocolError,
    ProviderError,
    StorageError,
    StreamCancelledError,
)
from .llm import CompletionClient, CompletionResult, TokenUsage
from .providers import NOT_CONFIGURED, ResolvedProvider, resolve_provider

__all__ = [
    "CompletionClient",
    "CompletionResult",
    "LLMOptions",
    "MianixSettings",
    "NOT_CONFIGURED",
    "ResolvedProvider",
    "TokenUsage",
    "load_settings",
    "migrate_settings",
    "resolve_provider",
    # Error types
    "MianixError",
    "ConfigurationError",
    "ProviderError",
    "AuthError",
    "NotFoundError",
    "NetworkError",
    "ProtocolError",
    "StorageError",
    "StreamCancelledError",
    "PartialDataWarning",
]
