from __future__ import annotations

from .fetcher import FetchedModel, ModelFetcher, parse_models
from .models import (
    AuthHeaderKind,
    LLMProvider,
    ModelClass,
    ModelDefaults,
    ModelOverrides,
    ModelReference,
    ProviderPreset,
)
from .presets import PROVIDER_PRESETS, detect_preset, get_preset
from .resolver import (
    NOT_CONFIGURED,
    NotConfigured,
    ResolvedProvider,
    auth_headers,
    build_headers,
    require_provider,
    resolve_provider,
)

__all__ = [
    "AuthHeaderKind",
    "FetchedModel",
    "LLMProvider",
    "ModelClass",
    "ModelDefaults",
    "ModelFetcher",
    "ModelOverrides",
    "ModelReference",
    "NOT_CONFIGURED",
    "NotConfigured",
    "PROVIDER_PRESETS",
    "ProviderPreset",
    "ResolvedProvider",
    "auth_headers",
    "build_headers",
    "detect_preset",
    "get_preset",
    "parse_models",
    "require_provider",
    "resolve_provider",
]
