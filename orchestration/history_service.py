# orchestration/history_service.py
"""Reading history: last-read chapter per story, kept locally and mirrored remotely."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable

import structlog
from config import settings
from data_access.remote_store import RemoteStore
from pydantic import ValidationError
from storage.local_store import LocalStore
from story_state.models import ReadingHistoryItem, StoryRef

import storage_keys

logger = structlog.get_logger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


def newest_first_unique(items: Iterable[ReadingHistoryItem]) -> list[ReadingHistoryItem]:
    """Keep the most recent entry per story url, ordered newest first."""
    latest: dict[str, ReadingHistoryItem] = {}
    for item in items:
        current = latest.get(item.url)
        if current is None or item.last_read_timestamp > current.last_read_timestamp:
            latest[item.url] = item
    return sorted(latest.values(), key=lambda i: i.last_read_timestamp, reverse=True)


def _parse_items(raw) -> list[ReadingHistoryItem]:
    if not isinstance(raw, list):
        return []
    items: list[ReadingHistoryItem] = []
    for entry in raw:
        try:
            items.append(ReadingHistoryItem.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping malformed history entry", error=str(exc))
    return items


class HistoryService:
    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore | None = None,
        is_ready: Callable[[], bool] = lambda: False,
        push_debounce_seconds: float = settings.HISTORY_PUSH_DEBOUNCE_SECONDS,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self.local_store = local_store
        self.remote_store = remote_store
        self.is_ready = is_ready
        self.push_debounce_seconds = push_debounce_seconds
        self.clock = clock
        self._push_timer: asyncio.Task | None = None

    def get_history(self) -> list[ReadingHistoryItem]:
        return _parse_items(self.local_store.get_item(settings.HISTORY_STORAGE_KEY))

    def save_local(self, items: list[ReadingHistoryItem]) -> bool:
        return self.local_store.set_item(
            settings.HISTORY_STORAGE_KEY,
            [item.model_dump(by_alias=True) for item in items],
        )

    async def _push(self, items: list[ReadingHistoryItem]) -> bool:
        if self.remote_store is None or not self.is_ready():
            return False
        try:
            await self.remote_store.put(
                storage_keys.COLLECTION_STORY_HISTORY,
                storage_keys.HISTORY_DOCUMENT_KEY,
                [item.model_dump(by_alias=True) for item in items],
            )
            return True
        except Exception as exc:
            logger.warning("Pushing reading history failed", error=str(exc))
            return False

    async def _delayed_push(self, items: list[ReadingHistoryItem]) -> None:
        await asyncio.sleep(self.push_debounce_seconds)
        if self._push_timer is asyncio.current_task():
            self._push_timer = None
        await self._push(items)

    def save_debounced(self, items: list[ReadingHistoryItem]) -> None:
        """Save locally now and push remotely once updates settle."""
        self.save_local(items)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; history push skipped")
            return
        if self._push_timer is not None and not self._push_timer.done():
            self._push_timer.cancel()
        self._push_timer = asyncio.create_task(self._delayed_push(list(items)))

    async def save_immediate(self, items: list[ReadingHistoryItem]) -> bool:
        self.save_local(items)
        return await self._push(items)

    def update(self, story: StoryRef, chapter_key: str) -> list[ReadingHistoryItem]:
        """Record ``chapter_key`` as the last chapter read in ``story``."""
        entry = ReadingHistoryItem(
            url=story.url,
            title=story.title,
            author=story.author,
            image_url=story.image_url,
            source=story.source,
            last_chapter_url=chapter_key,
            last_read_timestamp=self.clock(),
        )
        items = [entry] + [
            item
            for item in newest_first_unique(self.get_history())
            if item.url != story.url
        ]
        self.save_debounced(items)
        return items

    async def sync(self) -> bool:
        """Merge local and remote history, newest entry per story winning.

        Returns ``False`` when the remote store is unavailable or the merge
        could not be read.
        """
        if self.remote_store is None or not self.is_ready():
            return False
        try:
            remote_raw = await self.remote_store.get(
                storage_keys.COLLECTION_STORY_HISTORY, storage_keys.HISTORY_DOCUMENT_KEY
            )
        except Exception as exc:
            logger.error("Loading remote reading history failed", error=str(exc))
            return False

        merged = newest_first_unique([*self.get_history(), *_parse_items(remote_raw)])
        pushed = await self.save_immediate(merged)
        logger.info("Reading history synced", entries=len(merged), pushed=pushed)
        return pushed

    async def aclose(self) -> None:
        timer, self._push_timer = self._push_timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                logger.debug("History push timer cancelled")
