# story_state/models.py
"""Pydantic models shared by the sync queue, caches and reconstructor."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

import storage_keys

# Chapter deltas and cumulative states are untyped JSON records.
StateDict = dict[str, Any]


class SyncJob(BaseModel):
    """Upload of one chapter's content and optional AI delta."""

    model_config = ConfigDict(populate_by_name=True)

    story_key: str = Field(alias="storyUrl")
    chapter_key: str = Field(alias="chapterUrl")
    content: str
    delta: StateDict | None = Field(default=None, alias="aiData")
    retry_count: int = Field(default=0, alias="retry")

    @property
    def identity(self) -> str:
        return storage_keys.chapter_identity(self.story_key, self.chapter_key)

    def replace_payload(self, other: SyncJob) -> None:
        """Take ``other``'s content and delta, keeping this job's retry count."""
        self.content = other.content
        self.delta = other.delta


class CachedChapter(BaseModel):
    """Chapter content cached on the device, with its delta when analyzed."""

    content: str
    stats: StateDict | None = None


class ChapterRef(BaseModel):
    """Reference to one chapter of a story."""

    url: str
    title: str | None = None


class StoryRef(BaseModel):
    """Metadata of the story being read."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: str
    title: str = ""
    author: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    source: str | None = None
    chapters: list[ChapterRef] = Field(default_factory=list)


class ReadingHistoryItem(BaseModel):
    """Last-read position of one story."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: str
    title: str = ""
    author: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    source: str | None = None
    last_chapter_url: str = Field(alias="lastChapterUrl")
    last_read_timestamp: int = Field(alias="lastReadTimestamp")


class RebuildReport(BaseModel):
    """Outcome of a state rebuild, including which chapters contributed."""

    state: StateDict
    target_index: int
    applied: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    errored: list[str] = Field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        """True when a tier error may have hidden a chapter delta."""
        return bool(self.errored)
