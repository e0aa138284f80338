import json

import pytest

from mianix.core.models import LorebookEntry, MemoryEntry, MemoryType
from mianix.errors import StorageError
from mianix.store import (
    CharacterRepository,
    FileVault,
    LorebookRepository,
    MemoryIndexRepository,
    Vault,
    normalize_path,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("a/b/c.json", "a/b/c.json"),
        ("/a//b/", "a/b"),
        ("a\\b\\c", "a/b/c"),
        ("a/./b/../c", "a/c"),
        ("", ""),
    ],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


def test_file_vault_is_a_vault(vault):
    assert isinstance(vault, Vault)


@pytest.mark.asyncio
async def test_write_read_list(vault, tmp_path):
    await vault.write_text("chars/alice/card.json", '{"name": "Alice"}')
    assert (tmp_path / "chars" / "alice" / "card.json").exists()
    assert await vault.exists("chars/alice/card.json")
    assert await vault.read_text("chars/alice/card.json") == '{"name": "Alice"}'
    assert await vault.read_bytes("chars/alice/card.json") == b'{"name": "Alice"}'
    assert await vault.list_folder("chars/alice") == ["chars/alice/card.json"]
    assert await vault.list_folder("missing") == []
    assert not list(tmp_path.rglob("*.tmp"))


@pytest.mark.asyncio
async def test_read_missing_raises(vault):
    with pytest.raises(StorageError) as exc_info:
        await vault.read_text("nope.txt")
    assert exc_info.value.path == "nope.txt"


@pytest.mark.asyncio
async def test_paths_cannot_escape_root(vault):
    with pytest.raises(StorageError):
        await vault.read_text("../outside.txt")


@pytest.mark.asyncio
async def test_trash_moves_file(vault, tmp_path):
    await vault.write_text("old.md", "bye")
    await vault.trash("old.md")
    assert not await vault.exists("old.md")
    trashed = list((tmp_path / ".trash").iterdir())
    assert len(trashed) == 1
    assert trashed[0].name.endswith("-old.md")


@pytest.mark.asyncio
async def test_memory_index_append_preserves_other_keys(vault):
    await vault.write_text("chars/alice/index.json", json.dumps({"sessions": ["s1"]}))
    repo = MemoryIndexRepository(vault, "chars/alice")
    entry = MemoryEntry.from_content("Minh is a blacksmith", MemoryType.FACT, 0.8, "m1")

    await repo.append([entry])
    await repo.append([])

    data = json.loads(await vault.read_text("chars/alice/index.json"))
    assert data["sessions"] == ["s1"]
    assert data["memories"][0]["sourceMessageId"] == "m1"
    assert await repo.load() == [entry]


@pytest.mark.asyncio
async def test_memory_index_skips_invalid_entries(vault):
    memories = [
        {"id": "m1", "content": "ok", "type": "fact", "importance": 0.5},
        {"id": "m2", "content": "bad", "type": "fact", "importance": 3},
    ]
    await vault.write_text("c/index.json", json.dumps({"memories": memories}))
    assert [m.id for m in await MemoryIndexRepository(vault, "c").load()] == ["m1"]


@pytest.mark.asyncio
async def test_memory_index_missing_file(vault):
    assert await MemoryIndexRepository(vault, "nobody").load() == []


@pytest.mark.asyncio
async def test_lorebook_repository(vault):
    repo = LorebookRepository(vault, "lorebooks")
    assert await repo.load_private("chars/alice") is None
    assert await repo.load_shared() == []

    await repo.save_private("chars/alice", [LorebookEntry(name="Dragon", keys=["dragon"])])
    private = await repo.load_private("chars/alice")
    assert private.scope == "private"
    assert private.name == "alice's Lorebook"
    assert [e.name for e in private.entries] == ["Dragon"]

    await vault.write_text(
        "lorebooks/world.json",
        json.dumps({"name": "World", "entries": [{"name": "Sea", "keys": "sea, ocean"}]}),
    )
    await vault.write_text("lorebooks/list.json", json.dumps([{"name": "Moon", "keys": ["moon"]}]))
    await vault.write_text("lorebooks/broken.json", "{not json")
    await vault.write_text("lorebooks/notes.md", "ignored")

    shared = await repo.load_shared()
    assert [(b.id, b.name) for b in shared] == [("list", "list"), ("world", "World")]
    assert shared[1].entries[0].keys == ["sea", "ocean"]


@pytest.mark.asyncio
async def test_character_repository(vault):
    repo = CharacterRepository(vault)
    with pytest.raises(StorageError):
        await repo.load_card("chars/alice")

    await vault.write_text(
        "chars/alice/card.json",
        json.dumps({"id": "alice", "name": "Alice", "firstMessage": "Hi!"}),
    )
    card = await repo.load_card("chars/alice/")
    assert card.first_message == "Hi!"
    assert card.folder_path == "chars/alice"

    assert await repo.load_stats("chars/alice") is None
    await vault.write_text("chars/alice/stats.json", json.dumps({"baseStats": {"strength": 14}}))
    stats = await repo.load_stats("chars/alice")
    assert stats.base_stats == {"strength": 14}


@pytest.mark.asyncio
async def test_private_lorebook_skips_invalid_entries(vault):
    entries = [
        {"name": "Dragon", "keys": ["dragon"]},
        {"name": "Broken", "keys": ["x"], "order": "first"},
        "not an entry",
    ]
    await vault.write_text("chars/alice/lorebook.json", json.dumps({"entries": entries}))
    private = await LorebookRepository(vault, "lorebooks").load_private("chars/alice")
    assert [e.name for e in private.entries] == ["Dragon"]


@pytest.mark.asyncio
async def test_private_lorebook_with_invalid_json(vault):
    await vault.write_text("chars/alice/lorebook.json", "{not json")
    assert await LorebookRepository(vault, "lorebooks").load_private("chars/alice") is None
