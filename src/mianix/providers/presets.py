"""Pre-configured provider templates."""

from __future__ import annotations

from urllib.parse import urlparse

from .models import AuthHeaderKind, ProviderPreset

PROVIDER_PRESETS: list[ProviderPreset] = [
    ProviderPreset(
        id="openai",
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        auth_header=AuthHeaderKind.BEARER,
        suggested_text_models=["gpt-4o", "gpt-4-turbo", "gpt-4o-mini", "o1-mini"],
        suggested_extraction_models=["gpt-4o-mini"],
    ),
    ProviderPreset(
        id="google",
        name="Google AI",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        auth_header=AuthHeaderKind.X_GOOG_API_KEY,
        suggested_text_models=["gemini-2.0-flash-exp", "gemini-1.5-pro"],
        suggested_extraction_models=["gemini-2.0-flash-exp"],
    ),
    ProviderPreset(
        id="openrouter",
        name="OpenRouter",
        base_url="https://openrouter.ai/api/v1",
        auth_header=AuthHeaderKind.BEARER,
        suggested_text_models=[
            "anthropic/claude-3.5-sonnet",
            "google/gemini-2.0-flash-exp:free",
            "deepseek/deepseek-chat",
        ],
        suggested_extraction_models=["google/gemini-2.0-flash-exp:free"],
    ),
    ProviderPreset(
        id="groq",
        name="Groq",
        base_url="https://api.groq.com/openai/v1",
        auth_header=AuthHeaderKind.BEARER,
        suggested_text_models=["llama-3.3-70b-versatile", "mixtral-8x7b-32768"],
        suggested_extraction_models=["llama-3.1-8b-instant"],
    ),
    ProviderPreset(
        id="custom",
        name="OpenAI Compatible",
        base_url="",
        auth_header=AuthHeaderKind.BEARER,
    ),
]


def get_preset(preset_id: str | None) -> ProviderPreset | None:
    if not preset_id:
        return None
    return next((preset for preset in PROVIDER_PRESETS if preset.id == preset_id), None)


def detect_preset(base_url: str) -> ProviderPreset | None:
    """Guess the preset a base URL belongs to by its host."""
    host = (urlparse(base_url.lower()).hostname or "").strip()
    if not host:
        return None
    for preset in PROVIDER_PRESETS:
        if not preset.base_url:
            continue
        preset_host = urlparse(preset.base_url).hostname or ""
        if host == preset_host or host.endswith("." + preset_host):
            return preset
    if "generativelanguage" in host or host.endswith("googleapis.com"):
        return get_preset("google")
    return None
