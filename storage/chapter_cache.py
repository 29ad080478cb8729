# storage/chapter_cache.py
"""Local caches for chapter content, chapter deltas and read progress."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

import storage_keys
from story_state.models import CachedChapter, StateDict

from .local_store import LocalStore

logger = structlog.get_logger(__name__)


class ChapterCache:
    """Chapter content and its delta, cached on the device."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def get(self, story_key: str, chapter_key: str) -> CachedChapter | None:
        raw = self.store.get_item(storage_keys.chapter_cache_key(story_key, chapter_key))
        if raw is None:
            return None
        try:
            return CachedChapter.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Discarding malformed cached chapter",
                story_key=story_key,
                chapter_key=chapter_key,
                error=str(exc),
            )
            return None

    def set(
        self,
        story_key: str,
        chapter_key: str,
        content: str,
        stats: StateDict | None = None,
    ) -> bool:
        chapter = CachedChapter(content=content, stats=stats)
        return self.store.set_item(
            storage_keys.chapter_cache_key(story_key, chapter_key),
            chapter.model_dump(),
        )

    def get_delta(self, story_key: str, chapter_key: str) -> StateDict | None:
        cached = self.get(story_key, chapter_key)
        return cached.stats if cached else None


class ReadProgressStore:
    """The set of chapters a reader has opened, per story."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def load(self, story_key: str) -> set[str]:
        raw = self.store.get_item(storage_keys.read_chapters_key(story_key))
        if not isinstance(raw, list):
            return set()
        return {item for item in raw if isinstance(item, str)}

    def mark_read(self, story_key: str, chapter_key: str) -> set[str]:
        read = self.load(story_key)
        read.add(chapter_key)
        self.store.set_item(storage_keys.read_chapters_key(story_key), sorted(read))
        return read
