"""
Provider resolution.

Picks the provider and model that answer a request class:

1. Per-call override, if it names a provider that still exists
2. Global default for the model class, if its provider still exists
3. For ``extraction`` only: resolve as ``text`` instead
4. First configured provider with its default model

With no providers configured the result is ``NOT_CONFIGURED``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Literal

from ..errors import ConfigurationError
from .models import AuthHeaderKind, LLMProvider, ModelClass, ModelOverrides, ModelReference

if TYPE_CHECKING:
    from ..configs import MianixSettings


class _NotConfigured(Enum):
    NOT_CONFIGURED = "not_configured"

    def __bool__(self) -> Literal[False]:
        return False


NOT_CONFIGURED = _NotConfigured.NOT_CONFIGURED
NotConfigured = Literal[_NotConfigured.NOT_CONFIGURED]


@dataclass(frozen=True)
class ResolvedProvider:
    """Provider and model for one request; recompute per call."""

    provider: LLMProvider
    model: str

    @property
    def provider_id(self) -> str:
        return self.provider.id


def _from_reference(
    settings: "MianixSettings", reference: ModelReference | None
) -> ResolvedProvider | None:
    if reference is None or not reference.provider_id:
        return None
    provider = settings.find_provider(reference.provider_id)
    if provider is None:
        return None
    return ResolvedProvider(
        provider=provider, model=reference.model or provider.default_model or ""
    )


def resolve_provider(
    settings: "MianixSettings",
    model_class: ModelClass,
    override: ModelOverrides | None = None,
) -> ResolvedProvider | NotConfigured:
    if not settings.providers:
        return NOT_CONFIGURED

    resolved = _from_reference(settings, override.get(model_class) if override else None)
    if resolved:
        return resolved

    resolved = _from_reference(settings, settings.defaults.get(model_class))
    if resolved:
        return resolved

    if model_class == "extraction":
        return resolve_provider(settings, "text", override)

    first = settings.providers[0]
    return ResolvedProvider(provider=first, model=first.default_model or "")


def require_provider(
    settings: "MianixSettings",
    model_class: ModelClass,
    override: ModelOverrides | None = None,
) -> ResolvedProvider:
    """Like :func:`resolve_provider` but raises a user-facing error when unconfigured."""
    resolved = resolve_provider(settings, model_class, override)
    if resolved is NOT_CONFIGURED:
        raise ConfigurationError(
            "No LLM provider configured. Please add a provider in settings."
        )
    return resolved


def auth_headers(api_key: str, kind: AuthHeaderKind | str | None = None) -> dict[str, str]:
    """Build the single auth header for a provider's auth kind; bearer by default."""
    if kind == AuthHeaderKind.X_GOOG_API_KEY:
        return {"x-goog-api-key": api_key}
    if kind == AuthHeaderKind.X_API_KEY:
        return {"x-api-key": api_key}
    if kind == AuthHeaderKind.API_KEY:
        return {"api-key": api_key}
    return {"Authorization": f"Bearer {api_key}"}


def build_headers(provider: LLMProvider) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    headers.update(auth_headers(provider.api_key, provider.auth_header))
    return headers
