from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, field_validator

from ..utils.serialization import VaultModel

ModelClass = Literal["text", "extraction", "image"]


class AuthHeaderKind(str, Enum):
    BEARER = "bearer"
    X_GOOG_API_KEY = "x-goog-api-key"
    X_API_KEY = "x-api-key"
    API_KEY = "api-key"


class LLMProvider(VaultModel):
    """A configured OpenAI-compatible endpoint.

    Attributes:
        id (str): Unique identifier
        name (str): Display name
        base_url (str): API base URL, without trailing slash
        api_key (str): Secret key; never logged
        default_model (str | None): Model used when a reference names none
        auth_header (AuthHeaderKind | None): How the key is sent; bearer if unset
        preset_id (str | None): Preset template the provider was created from
    """

    id: str
    name: str = ""
    base_url: str
    api_key: str = Field(default="", repr=False)
    default_model: str | None = None
    auth_header: AuthHeaderKind | None = None
    preset_id: str | None = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("auth_header", mode="before")
    @classmethod
    def unknown_auth_is_bearer(cls, value):
        if value is None or value == "":
            return None
        try:
            return AuthHeaderKind(value)
        except ValueError:
            return AuthHeaderKind.BEARER


class ModelReference(VaultModel):
    """Pointer into the provider list; may dangle after a provider is deleted."""

    provider_id: str = ""
    model: str = ""


class ModelDefaults(VaultModel):
    text: ModelReference = Field(default_factory=ModelReference)
    extraction: ModelReference | None = None
    image: ModelReference | None = None

    def get(self, model_class: ModelClass) -> ModelReference | None:
        return getattr(self, model_class, None)


class ModelOverrides(VaultModel):
    """Per-character overrides, same shape as the global defaults."""

    text: ModelReference | None = None
    extraction: ModelReference | None = None
    image: ModelReference | None = None

    def get(self, model_class: ModelClass) -> ModelReference | None:
        return getattr(self, model_class, None)


class ProviderPreset(VaultModel):
    id: str
    name: str
    base_url: str
    models_endpoint: str = "/models"
    auth_header: AuthHeaderKind = AuthHeaderKind.BEARER
    suggested_text_models: list[str] = Field(default_factory=list)
    suggested_extraction_models: list[str] = Field(default_factory=list)
