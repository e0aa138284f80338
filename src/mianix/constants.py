"""Vault layout and policy constants."""

PLUGIN_ID = "mianix-roleplay"

# Base folder for all plugin data in the vault
MIANIX_BASE_FOLDER = "tale-vault"
CHARACTERS_FOLDER = f"{MIANIX_BASE_FOLDER}/character-cards"
LOREBOOKS_FOLDER = f"{MIANIX_BASE_FOLDER}/lorebooks"
PRESETS_FOLDER = f"{MIANIX_BASE_FOLDER}/presets"

CARD_FILE = "card.json"
INDEX_FILE = "index.json"
LOREBOOK_FILE = "lorebook.json"
STATS_FILE = "stats.json"

# Ranking policy
BM25_K1 = 1.5
BM25_B = 0.75
MIN_SCORE_THRESHOLD = 0.3
MIN_TOKEN_LENGTH = 2

MAX_ACTIVE_ENTRIES = 5
LOREBOOK_CONTENT_PREFIX = 200
DEFAULT_MEMORY_LIMIT = 5
DEFAULT_SCAN_DEPTH = 5
# Chat history window sent to the narrator and the director
RECENT_MESSAGES_COUNT = 10

# Cached model lists rarely change
MODEL_CACHE_TTL_SECONDS = 30 * 60
