# core/models.py
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import LOREBOOK_CONTENT_PREFIX
from ..utils.serialization import VaultModel
from ._internal.indexing import IndexedDocument, extract_keywords, tokenize


class MemoryType(str, Enum):
    FACT = "fact"
    EVENT = "event"
    PREFERENCE = "preference"
    RELATIONSHIP = "relationship"


def new_memory_id() -> str:
    return f"mem-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class MemoryEntry(VaultModel):
    """A durable fact extracted from one conversation turn.

    Entries are immutable once written and never deleted automatically.

    Attributes:
        id (str): Unique identifier, ``mem-<ms>-<hex>``
        content (str): Short description of the fact
        type (MemoryType): fact, event, preference or relationship
        importance (float): Weight in [0, 1] assigned by the extractor
        source_message_id (str): Message the fact was extracted from
        keywords (list[str]): Derived search keywords
        created_at (datetime): Creation time in UTC
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_memory_id)
    content: str
    type: MemoryType
    importance: float = Field(ge=0.0, le=1.0)
    source_message_id: str = ""
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_content(
        cls,
        content: str,
        memory_type: MemoryType,
        importance: float,
        source_message_id: str,
    ) -> "MemoryEntry":
        return cls(
            content=content,
            type=memory_type,
            importance=importance,
            source_message_id=source_message_id,
            keywords=extract_keywords(content),
        )

    def to_document(self, position: int) -> IndexedDocument["MemoryEntry"]:
        tokens = tokenize(self.content) + tokenize(" ".join(self.keywords))
        return IndexedDocument(
            doc_id=self.id,
            tokens=tuple(tokens),
            payload=self,
            order=position,
        )

    def format_line(self) -> str:
        return f"{self.content} ({self.type.value}, importance: {self.importance:g})"


class LorebookEntry(VaultModel):
    """Keyword-triggered world info authored by the user."""

    name: str
    keys: list[str] = Field(default_factory=list)
    content: str = ""
    order: int = 0
    enabled: bool = True
    always_active: bool = False

    @field_validator("keys", mode="before")
    @classmethod
    def split_keys(cls, value):
        if isinstance(value, str):
            return [key.strip() for key in value.split(",") if key.strip()]
        return value

    def to_document(self, position: int) -> IndexedDocument["LorebookEntry"]:
        text = " ".join([*self.keys, self.content[:LOREBOOK_CONTENT_PREFIX]])
        return IndexedDocument(
            doc_id=f"{position}:{self.name}",
            tokens=tuple(tokenize(text)),
            payload=self,
            order=self.order,
            always_active=self.always_active,
            enabled=self.enabled,
        )


class Lorebook(VaultModel):
    id: str
    name: str
    description: str | None = None
    scope: Literal["private", "shared"] = "shared"
    entries: list[LorebookEntry] = Field(default_factory=list)
    source_path: str | None = None


class CharacterCard(VaultModel):
    id: str
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    first_message: str = ""
    folder_path: str = ""


class DialogueMessage(VaultModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    parent_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResourceStat(BaseModel):
    current: int
    max: int


class CharacterStats(VaultModel):
    """RPG stats stored in ``stats.json``."""

    version: int = 1
    base_stats: dict[str, int] = Field(
        default_factory=lambda: {
            "strength": 10,
            "dexterity": 10,
            "constitution": 10,
            "intelligence": 10,
            "wisdom": 10,
            "charisma": 10,
        }
    )
    derived_stats: dict[str, ResourceStat | None] = Field(
        default_factory=lambda: {"hp": ResourceStat(current=20, max=20)}
    )
    conditions: list[str] = Field(default_factory=list)
    custom_stats: dict[str, int] = Field(default_factory=dict)


class POVMode(str, Enum):
    FIXED = "fixed"
    SWITCHABLE = "switchable"
    ANY = "any"


class POVOptions(VaultModel):
    """Whose perspective the narrator writes from; enables the director pass."""

    mode: POVMode = POVMode.FIXED
    # Switchable mode only; defaults to the main character
    character_id: str | None = None
