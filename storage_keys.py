# storage_keys.py
"""Collection names and key builders shared by the local and remote tiers."""

# Remote store collections
COLLECTION_STORY_HISTORY = "story-history"
COLLECTION_STORY_STATE = "cumulative-story-state"
COLLECTION_CHAPTER_CONTENT = "chapter-content"
COLLECTION_CHAPTER_DELTA = "chapter-ai-delta"

REMOTE_COLLECTIONS = {
    COLLECTION_STORY_HISTORY,
    COLLECTION_STORY_STATE,
    COLLECTION_CHAPTER_CONTENT,
    COLLECTION_CHAPTER_DELTA,
}

# Single document key used for the reading history collection
HISTORY_DOCUMENT_KEY = "history"

# Local store key prefixes
STORY_STATE_PREFIX = "story_state_"
READ_CHAPTERS_PREFIX = "readChapters_"
CHAPTER_CACHE_PREFIX = "chapter_cache_"

IDENTITY_SEPARATOR = "::"


def chapter_identity(story_key: str, chapter_key: str) -> str:
    """Return the identity string of a chapter within a story."""
    return f"{story_key}{IDENTITY_SEPARATOR}{chapter_key}"


def story_state_key(story_key: str) -> str:
    """Return the local key of the cumulative state snapshot for ``story_key``."""
    return f"{STORY_STATE_PREFIX}{story_key}"


def read_chapters_key(story_key: str) -> str:
    """Return the local key of the read-progress set for ``story_key``."""
    return f"{READ_CHAPTERS_PREFIX}{story_key}"


def chapter_cache_key(story_key: str, chapter_key: str) -> str:
    """Return the local key of a cached chapter."""
    return f"{CHAPTER_CACHE_PREFIX}{chapter_identity(story_key, chapter_key)}"
