"""Package consolidating chapter delta merging and state reconstruction."""

from . import merge as merge
from . import models as models
from .loader import (
    DeltaSource,
    LoadOutcome,
    MemoryTier,
    TieredLoader,
    create_tiered_loader,
)
from .merge import (
    deep_merge,
    fold_chapter_deltas,
    merge_chapter_stats,
    merge_lists_by_key,
)
from .models import (
    CachedChapter,
    ChapterRef,
    ReadingHistoryItem,
    RebuildReport,
    StoryRef,
    SyncJob,
)
from .reconstruction import StateReconstructor
from .state_store import StoryStateStore

__all__ = [
    "CachedChapter",
    "ChapterRef",
    "DeltaSource",
    "LoadOutcome",
    "MemoryTier",
    "ReadingHistoryItem",
    "RebuildReport",
    "StateReconstructor",
    "StoryRef",
    "StoryStateStore",
    "SyncJob",
    "TieredLoader",
    "create_tiered_loader",
    "deep_merge",
    "fold_chapter_deltas",
    "merge_chapter_stats",
    "merge_lists_by_key",
    "merge",
    "models",
]
