# story_state/reconstruction.py
"""Rebuild the cumulative story state up to a chapter from per-chapter deltas."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from .loader import LoadOutcome, TieredLoader
from .merge import merge_chapter_stats
from .models import ChapterRef, RebuildReport, StateDict
from .state_store import StoryStateStore

logger = structlog.get_logger(__name__)

ChapterLike = ChapterRef | Mapping[str, Any] | str


def chapter_key_of(chapter: ChapterLike) -> str:
    """Return the key (url) identifying ``chapter``."""
    if isinstance(chapter, str):
        return chapter
    if isinstance(chapter, ChapterRef):
        return chapter.url
    return str(chapter.get("url", ""))


def clamp_index(target_index: int, chapter_count: int) -> int:
    """Clamp ``target_index`` into ``[0, chapter_count - 1]``."""
    return max(0, min(target_index, max(chapter_count, 1) - 1))


async def _fetch(loader: Any, key: str) -> LoadOutcome:
    if isinstance(loader, TieredLoader):
        return await loader.load_with_outcome(key)
    return LoadOutcome(key=key, value=await loader.load(key))


class StateReconstructor:
    """Fold stored chapter deltas into cumulative state, caching per chapter index.

    The per-index cache belongs to the active story session and must be reset
    whenever the active story changes.
    """

    def __init__(
        self,
        state_store: StoryStateStore | None = None,
        key_fields: Sequence[str] | None = None,
    ) -> None:
        self.state_store = state_store
        self.key_fields = key_fields
        self.state_at_chapter: dict[int, StateDict] = {}

    def reset(self) -> None:
        self.state_at_chapter.clear()

    def cached_state(self, index: int) -> StateDict | None:
        return self.state_at_chapter.get(index)

    def remember(self, story_key: str, index: int, state: StateDict) -> None:
        """Cache ``state`` for ``index`` and persist it as the story snapshot."""
        self.state_at_chapter[index] = state
        if self.state_store is not None:
            self.state_store.save(story_key, state)

    async def rebuild_with_report(
        self,
        story_key: str,
        chapters: Sequence[ChapterLike],
        target_index: int,
        loader: TieredLoader | Any,
        base_state: StateDict | None = None,
    ) -> RebuildReport:
        """Rebuild state through ``target_index`` and report which chapters contributed.

        Deltas are fetched concurrently but always folded in chapter order.
        A chapter whose lookup failed contributes nothing and is listed in
        ``errored``; one with no stored delta is listed in ``missing``.
        """
        state: StateDict = copy.deepcopy(base_state) if base_state else {}
        if not chapters:
            return RebuildReport(state=state, target_index=0)

        safe_index = clamp_index(target_index, len(chapters))
        keys = [chapter_key_of(c) for c in chapters[: safe_index + 1]]

        results = await asyncio.gather(
            *(_fetch(loader, key) for key in keys), return_exceptions=True
        )

        report = RebuildReport(state=state, target_index=safe_index)
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Delta lookup failed during rebuild; chapter skipped",
                    story_key=story_key,
                    chapter_key=key,
                    error=str(result),
                )
                report.errored.append(key)
                continue
            if result.value is None:
                (report.errored if result.errors else report.missing).append(key)
                continue
            state = merge_chapter_stats(state, result.value, self.key_fields)
            report.applied.append(key)

        report.state = state
        self.remember(story_key, safe_index, state)
        logger.debug(
            "Rebuilt cumulative state",
            story_key=story_key,
            target_index=safe_index,
            applied=len(report.applied),
            missing=len(report.missing),
            errored=len(report.errored),
        )
        return report

    async def rebuild(
        self,
        story_key: str,
        chapters: Sequence[ChapterLike],
        target_index: int,
        loader: TieredLoader | Any,
        base_state: StateDict | None = None,
    ) -> StateDict:
        report = await self.rebuild_with_report(
            story_key, chapters, target_index, loader, base_state
        )
        return report.state
