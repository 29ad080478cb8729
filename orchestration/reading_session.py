# orchestration/reading_session.py
"""Coordinates chapter loading, analysis, state rebuilds and upload queueing."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

import structlog
from core.analysis_service import AnalysisError, AnalysisService
from data_access.remote_store import RemoteStore, RemoteStoreError
from pydantic import BaseModel, Field
from storage.chapter_cache import ChapterCache, ReadProgressStore
from storage.local_store import LocalStore
from story_state.loader import MemoryTier, TieredLoader, create_tiered_loader
from story_state.merge import merge_chapter_stats
from story_state.models import CachedChapter, ChapterRef, RebuildReport, StateDict, StoryRef
from story_state.reconstruction import StateReconstructor
from story_state.state_store import StoryStateStore

import storage_keys
from orchestration.auth_state import AuthState
from orchestration.history_service import HistoryService
from orchestration.sync_engine import SyncEngine

logger = structlog.get_logger(__name__)

ContentFetcher = Callable[[ChapterRef], Awaitable[str]]


def should_analyze_sequential(
    prev_index: int | None, next_index: int, first_entry: bool
) -> bool:
    """Decide whether opening ``next_index`` should trigger chapter analysis.

    On the first chapter opened in a story only chapter 0 is analyzed.
    Afterwards only moving forward by exactly one chapter is; jumps and
    backward moves reuse stored deltas.
    """
    if first_entry:
        return next_index == 0
    if prev_index is None:
        return False
    return next_index == prev_index + 1


class ChapterView(BaseModel):
    """What the reader sees after opening a chapter."""

    index: int
    chapter_key: str
    content: str
    state: StateDict = Field(default_factory=dict)
    source: str
    analyzed: bool = False
    analysis_error: str | None = None


class ReadingSession:
    """State of the story currently being read.

    All per-story caches (memory delta tier, state by chapter index) are
    dropped when a different story is opened.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore,
        auth_state: AuthState,
        sync_engine: SyncEngine,
        history: HistoryService,
        analysis: AnalysisService | None = None,
        key_fields: Sequence[str] | None = None,
    ) -> None:
        self.remote_store = remote_store
        self.auth_state = auth_state
        self.sync_engine = sync_engine
        self.history = history
        self.analysis = analysis

        self.chapter_cache = ChapterCache(local_store)
        self.progress = ReadProgressStore(local_store)
        self.state_store = StoryStateStore(
            local_store, remote_store, auth_state.is_signed_in
        )
        self.memory = MemoryTier()
        self.reconstructor = StateReconstructor(self.state_store, key_fields)

        self.story: StoryRef | None = None
        self.cumulative_state: StateDict = {}
        self.read_chapters: set[str] = set()
        self.current_index: int | None = None
        self.current_content: str | None = None
        self.last_report: RebuildReport | None = None
        self._first_entry = True
        self._last_index: int | None = None

    # === Story ===

    def _reset_story_caches(self) -> None:
        self.memory.clear()
        self.reconstructor.reset()
        self._first_entry = True
        self._last_index = None
        self.current_index = None
        self.current_content = None
        self.last_report = None

    async def open_story(self, story: StoryRef) -> StateDict:
        """Make ``story`` the active story and load its saved state and progress."""
        if self.story is None or self.story.url != story.url:
            self._reset_story_caches()
            logger.info("Opened story", story_key=story.url, chapters=len(story.chapters))
        self.story = story
        self.cumulative_state = await self.state_store.load(story.url) or {}
        self.read_chapters = self.progress.load(story.url)
        return self.cumulative_state

    def _require_chapter(self, index: int) -> tuple[StoryRef, ChapterRef]:
        if self.story is None:
            raise RuntimeError("No story is open")
        if index < 0 or index >= len(self.story.chapters):
            raise IndexError(
                f"Chapter index {index} out of range for {len(self.story.chapters)} chapters"
            )
        return self.story, self.story.chapters[index]

    # === Loading ===

    def build_loader(self, story_key: str) -> TieredLoader:
        """Memory, then local chapter cache, then remote deltas when signed in."""

        async def local_source(chapter_key: str) -> StateDict | None:
            return self.chapter_cache.get_delta(story_key, chapter_key)

        async def remote_source(chapter_key: str) -> StateDict | None:
            if not self.auth_state.is_signed_in():
                return None
            value = await self.remote_store.get(
                storage_keys.COLLECTION_CHAPTER_DELTA,
                storage_keys.chapter_identity(story_key, chapter_key),
            )
            return value if isinstance(value, dict) else None

        return create_tiered_loader(self.memory, local_source, remote_source)

    async def _load_remote_chapter(
        self, story_key: str, chapter_key: str
    ) -> CachedChapter | None:
        identity = storage_keys.chapter_identity(story_key, chapter_key)
        doc = await self.remote_store.get(storage_keys.COLLECTION_CHAPTER_CONTENT, identity)
        if not isinstance(doc, dict) or not isinstance(doc.get("content"), str):
            return None
        delta = await self.remote_store.get(storage_keys.COLLECTION_CHAPTER_DELTA, identity)
        return CachedChapter(
            content=doc["content"], stats=delta if isinstance(delta, dict) else None
        )

    async def _load_chapter(
        self, story_key: str, chapter: ChapterRef
    ) -> tuple[CachedChapter | None, str]:
        local = self.chapter_cache.get(story_key, chapter.url)
        if self.auth_state.is_signed_in():
            try:
                remote = await self._load_remote_chapter(story_key, chapter.url)
            except RemoteStoreError as exc:
                logger.warning(
                    "Remote chapter lookup failed; using local cache",
                    chapter_key=chapter.url,
                    error=str(exc),
                )
                remote = None
            if remote is not None:
                if remote.stats is None and local is not None:
                    remote.stats = local.stats
                self.chapter_cache.set(story_key, chapter.url, remote.content, remote.stats)
                return remote, "remote"
        if local is not None:
            return local, "local"
        return None, "fetched"

    # === State ===

    async def rebuild_for_chapter(self, index: int) -> StateDict:
        """Rebuild cumulative state through ``index`` without calling analysis."""
        if self.story is None or not self.story.chapters:
            return {}
        story_key = self.story.url
        report = await self.reconstructor.rebuild_with_report(
            story_key, self.story.chapters, index, self.build_loader(story_key)
        )
        if report.is_degraded:
            logger.warning(
                "Rebuilt state may be incomplete",
                story_key=story_key,
                errored=report.errored,
            )
        self.last_report = report
        self.cumulative_state = report.state
        return report.state

    async def _analyze_and_store(
        self, story: StoryRef, index: int, chapter: ChapterRef, content: str
    ) -> StateDict:
        base = {} if index == 0 else await self.rebuild_for_chapter(index - 1)
        delta = await self.analysis.analyze(content, base)
        new_state = merge_chapter_stats(base, delta, self.reconstructor.key_fields)

        self.reconstructor.remember(story.url, index, new_state)
        await self.state_store.push(story.url, new_state)
        self.chapter_cache.set(story.url, chapter.url, content, delta)
        self.memory.store(chapter.url, delta)
        self.sync_engine.enqueue_chapter_sync(story.url, chapter.url, content, delta)
        self.cumulative_state = new_state
        return new_state

    async def open_chapter(
        self, index: int, fetch_content: ContentFetcher, prefetch: bool = True
    ) -> ChapterView:
        """Open chapter ``index`` of the active story.

        Content comes from the remote store when signed in, then the local
        cache, then ``fetch_content``. Analysis only runs when reading
        forward one chapter at a time and no delta is stored yet.
        """
        story, chapter = self._require_chapter(index)
        will_analyze = self.analysis is not None and should_analyze_sequential(
            self._last_index, index, self._first_entry
        )
        logger.debug(
            "Analysis decision",
            prev_index=self._last_index,
            next_index=index,
            first_entry=self._first_entry,
            will_analyze=will_analyze,
        )

        self.history.update(story, chapter.url)
        self.read_chapters = self.progress.mark_read(story.url, chapter.url)
        cached_state = self.reconstructor.cached_state(index)
        if cached_state is not None:
            self.cumulative_state = cached_state

        analyzed = False
        analysis_error: str | None = None
        try:
            cached, source = await self._load_chapter(story.url, chapter)
            if cached is not None:
                content = cached.content
                needs_analysis = will_analyze and cached.stats is None
            else:
                content = await fetch_content(chapter)
                needs_analysis = will_analyze

            if needs_analysis:
                try:
                    await self._analyze_and_store(story, index, chapter, content)
                    analyzed = True
                except AnalysisError as exc:
                    analysis_error = str(exc)
                    logger.error(
                        "Chapter analysis failed; keeping content only",
                        chapter_key=chapter.url,
                        error=analysis_error,
                    )
                    if cached is None:
                        self.chapter_cache.set(story.url, chapter.url, content)
                        self.sync_engine.enqueue_chapter_sync(story.url, chapter.url, content)
                    elif self.reconstructor.cached_state(index) is None:
                        await self.rebuild_for_chapter(index)
            else:
                if cached is None:
                    self.chapter_cache.set(story.url, chapter.url, content)
                if cached is None or self.reconstructor.cached_state(index) is None:
                    await self.rebuild_for_chapter(index)
        finally:
            self._first_entry = False
            self._last_index = index

        self.current_index = index
        self.current_content = content
        if prefetch:
            await self.prefetch_next_chapter(index + 1, fetch_content)
        return ChapterView(
            index=index,
            chapter_key=chapter.url,
            content=content,
            state=self.cumulative_state,
            source=source,
            analyzed=analyzed,
            analysis_error=analysis_error,
        )

    async def reanalyze_current(self) -> StateDict:
        """Analyze the open chapter again, replacing its stored delta."""
        if self.current_index is None or self.current_content is None:
            raise RuntimeError("No chapter is open")
        if self.analysis is None:
            raise RuntimeError("No analysis service configured")
        story, chapter = self._require_chapter(self.current_index)
        return await self._analyze_and_store(
            story, self.current_index, chapter, self.current_content
        )

    async def prefetch_next_chapter(self, index: int, fetch_content: ContentFetcher) -> bool:
        """Cache the content of chapter ``index`` ahead of time; never analyzes."""
        if self.story is None or index < 0 or index >= len(self.story.chapters):
            return False
        story_key = self.story.url
        chapter = self.story.chapters[index]
        try:
            if self.auth_state.is_signed_in():
                remote = await self._load_remote_chapter(story_key, chapter.url)
                if remote is not None:
                    self.chapter_cache.set(story_key, chapter.url, remote.content, remote.stats)
                    return True
            if self.chapter_cache.get(story_key, chapter.url) is not None:
                return False
            content = await fetch_content(chapter)
            self.chapter_cache.set(story_key, chapter.url, content)
            return True
        except Exception as exc:
            logger.warning("Prefetch skipped", chapter_key=chapter.url, error=str(exc))
            return False
