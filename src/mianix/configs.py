"""
Plugin settings and their migration.

Settings are an explicit value: load them once and pass them to each
component at call time. Nothing in the package keeps a global copy.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError

from .constants import DEFAULT_MEMORY_LIMIT, DEFAULT_SCAN_DEPTH
from .utils.serialization import VaultModel
from .errors import ConfigurationError
from .providers.models import LLMProvider, ModelDefaults, ModelReference
from .providers.presets import detect_preset

logger = logging.getLogger(__name__)

SETTINGS_ENV = "MIANIX_SETTINGS"
VAULT_ENV = "MIANIX_VAULT"
TIMEOUT_ENV = "MIANIX_TIMEOUT"


class LLMOptions(VaultModel):
    """Sampling parameters stored per dialogue session."""

    temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    # Target word count, substituted into the output format prompt
    response_length: int = Field(default=800, gt=0)


class MianixSettings(VaultModel):
    """Multi-provider plugin settings (``data.json``)."""

    providers: list[LLMProvider] = Field(default_factory=list)
    defaults: ModelDefaults = Field(default_factory=ModelDefaults)
    enable_memory_extraction: bool = False
    enable_stats: bool = False
    lorebook_scan_depth: int = Field(default=DEFAULT_SCAN_DEPTH, ge=1)
    memory_search_limit: int = Field(default=DEFAULT_MEMORY_LIMIT, ge=1)
    request_timeout: float = Field(default=120.0, gt=0)

    def find_provider(self, provider_id: str | None) -> LLMProvider | None:
        if not provider_id:
            return None
        return next((p for p in self.providers if p.id == provider_id), None)


def _is_new_format(data: dict[str, Any]) -> bool:
    providers = data.get("providers")
    return isinstance(providers, list) and len(providers) > 0


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        if value is not None:
            logger.warning("Ignoring legacy settings block %r: expected an object", key)
        return {}
    return value


def _provider_from_legacy(config: dict[str, Any], name_suffix: str = "") -> LLMProvider:
    base_url = config["baseUrl"]
    preset = detect_preset(base_url)
    return LLMProvider(
        id=str(uuid.uuid4()),
        name=(preset.name if preset else "Custom Provider") + name_suffix,
        base_url=base_url,
        api_key=config.get("apiKey", ""),
        default_model=config.get("modelName") or None,
        auth_header=preset.auth_header if preset else None,
        preset_id=preset.id if preset else None,
    )


def migrate_settings(data: Any) -> MianixSettings:
    """
    Upgrade legacy single-provider settings to the multi-provider format.

    Legacy settings carry an ``llm`` block and an optional ``extractionModel``
    block. The extraction block becomes a model reference on the main
    provider when it shares its base URL or has no key of its own, and a
    separate provider otherwise.

    Args:
        data: Raw JSON value read from ``data.json``

    Returns:
        Validated settings; defaults for empty or unrecognized input
    """
    if not isinstance(data, dict) or not data:
        return MianixSettings()

    if _is_new_format(data):
        return MianixSettings.model_validate(data)

    providers: list[LLMProvider] = []
    defaults = ModelDefaults()
    llm = _section(data, "llm")

    if llm.get("apiKey") and llm.get("baseUrl"):
        main = _provider_from_legacy(llm)
        providers.append(main)
        defaults.text = ModelReference(provider_id=main.id, model=llm.get("modelName", ""))

        extraction = _section(data, "extractionModel")
        if extraction.get("modelName"):
            same_provider = (
                not extraction.get("apiKey") or extraction.get("baseUrl") == llm["baseUrl"]
            )
            if same_provider:
                defaults.extraction = ModelReference(
                    provider_id=main.id, model=extraction["modelName"]
                )
            elif extraction.get("baseUrl"):
                extra = _provider_from_legacy(extraction, " (Extraction)")
                providers.append(extra)
                defaults.extraction = ModelReference(
                    provider_id=extra.id, model=extraction["modelName"]
                )

    logger.info("Migrated legacy settings: providers=%s", len(providers))
    return MianixSettings(
        providers=providers,
        defaults=defaults,
        enable_memory_extraction=data.get("enableMemoryExtraction", False),
        enable_stats=data.get("enableStats", False),
        lorebook_scan_depth=data.get("lorebookScanDepth", DEFAULT_SCAN_DEPTH),
    )


def load_settings(path: str | os.PathLike[str]) -> MianixSettings:
    """Read and migrate ``data.json``; a missing file yields defaults."""
    settings_path = Path(path)
    if not settings_path.is_file():
        logger.info("Settings file %s not found, using defaults", settings_path)
        return MianixSettings()
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
        return migrate_settings(data)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Settings file is not valid JSON: {settings_path}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {settings_path}: {e}") from e


def settings_from_env(path: str | None = None) -> MianixSettings:
    """Load settings from ``path`` or ``MIANIX_SETTINGS``, applying env overrides."""
    settings_path = path or os.getenv(SETTINGS_ENV) or "data.json"
    settings = load_settings(settings_path)
    timeout = os.getenv(TIMEOUT_ENV)
    if timeout:
        try:
            settings = settings.model_copy(update={"request_timeout": float(timeout)})
        except ValueError as e:
            raise ConfigurationError(f"{TIMEOUT_ENV} must be a number, got {timeout!r}") from e
    return settings
