"""
Model listing for configured providers.

Vendors answer ``GET /models`` with different JSON shapes. Each known
shape has its own parser; the parser is picked by preset id, with a
best-effort fallback chain for everything else.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from ..constants import MODEL_CACHE_TTL_SECONDS
from ..utils.logging import elapsed_ms, log_context
from .models import AuthHeaderKind, LLMProvider
from .presets import get_preset
from .resolver import build_headers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedModel:
    id: str
    name: str | None = None
    created: int | None = None


def parse_openai_models(data: Any) -> list[FetchedModel]:
    """``{"data": [{"id", "name"?, "created"?}]}``"""
    if not isinstance(data, dict) or not isinstance(data.get("data"), list):
        return []
    models = []
    for item in data["data"]:
        if not isinstance(item, dict):
            continue
        created = item.get("created")
        models.append(
            FetchedModel(
                id=str(item.get("id") or ""),
                name=str(item["name"]) if item.get("name") else None,
                created=created if isinstance(created, int) else None,
            )
        )
    return models


def parse_google_models(data: Any) -> list[FetchedModel]:
    """``{"models": [{"name": "models/<id>", "displayName"?}]}``"""
    if not isinstance(data, dict) or not isinstance(data.get("models"), list):
        return []
    models = []
    for item in data["models"]:
        if not isinstance(item, dict):
            continue
        model_id = str(item.get("name") or "").removeprefix("models/")
        models.append(FetchedModel(id=model_id, name=str(item.get("displayName") or model_id)))
    return models


def parse_array_models(data: Any) -> list[FetchedModel]:
    """``[{"id" | "name", "name"?}]``"""
    if not isinstance(data, list):
        return []
    return [
        FetchedModel(
            id=str(item.get("id") or item.get("name") or ""),
            name=str(item["name"]) if item.get("name") else None,
        )
        for item in data
        if isinstance(item, dict)
    ]


PRESET_PARSERS: dict[str, Callable[[Any], list[FetchedModel]]] = {
    "google": parse_google_models,
}


def parse_models(data: Any, preset_id: str | None = None) -> list[FetchedModel]:
    parser = PRESET_PARSERS.get(preset_id or "")
    if parser is not None:
        return parser(data)
    models = parse_openai_models(data)
    if models:
        return models
    return parse_array_models(data)


@dataclass
class _CacheEntry:
    models: list[FetchedModel]
    fetched_at: float


class ModelFetcher:
    """Fetches and caches the model list of each provider.

    Listing is advisory: any failure is logged and yields an empty list.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        ttl_seconds: float = MODEL_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http_client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}

    @staticmethod
    def cache_key(provider: LLMProvider) -> str:
        # Key suffix tells apart providers that share a base URL
        suffix = provider.api_key[-4:] if provider.api_key else "nokey"
        return f"{provider.base_url}-{suffix}"

    @staticmethod
    def models_endpoint(provider: LLMProvider) -> str:
        preset = get_preset(provider.preset_id)
        return preset.models_endpoint if preset else "/models"

    @staticmethod
    def auth_kind(provider: LLMProvider) -> AuthHeaderKind:
        if provider.auth_header:
            return provider.auth_header
        preset = get_preset(provider.preset_id)
        return preset.auth_header if preset else AuthHeaderKind.BEARER

    def get_cached(self, provider: LLMProvider) -> list[FetchedModel] | None:
        entry = self._cache.get(self.cache_key(provider))
        if entry and self._clock() - entry.fetched_at < self.ttl_seconds:
            return entry.models
        return None

    def clear_cache(self, provider: LLMProvider | None = None) -> None:
        if provider is None:
            self._cache.clear()
        else:
            self._cache.pop(self.cache_key(provider), None)

    async def fetch_models(
        self, provider: LLMProvider, force_refresh: bool = False
    ) -> list[FetchedModel]:
        if not provider.base_url or not provider.api_key:
            logger.warning("Model fetch skipped: missing base URL or API key")
            return []

        if not force_refresh:
            cached = self.get_cached(provider)
            if cached is not None:
                return cached

        request_provider = provider.model_copy(update={"auth_header": self.auth_kind(provider)})
        url = f"{provider.base_url}{self.models_endpoint(provider)}"
        start = time.perf_counter()
        try:
            if self._http is not None:
                response = await self._http.get(url, headers=build_headers(request_provider))
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(url, headers=build_headers(request_provider))
        except httpx.HTTPError:
            logger.exception(
                "Failed to fetch models",
                extra=log_context("models", provider_id=provider.id),
            )
            return []

        if not response.is_success:
            logger.error(
                "Model fetch failed: %s %s",
                response.status_code,
                response.reason_phrase,
                extra=log_context("models", provider_id=provider.id),
            )
            return []

        try:
            data = response.json()
        except ValueError:
            logger.warning(
                "Model list is not JSON",
                extra=log_context("models", provider_id=provider.id),
            )
            return []

        models = parse_models(data, provider.preset_id)
        self._cache[self.cache_key(provider)] = _CacheEntry(models=models, fetched_at=self._clock())
        logger.info(
            "Fetched %s models",
            len(models),
            extra=log_context("models", provider_id=provider.id, duration_ms=elapsed_ms(start)),
        )
        return models
