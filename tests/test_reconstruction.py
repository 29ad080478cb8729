# tests/test_reconstruction.py
import asyncio

import pytest

from story_state.loader import MemoryTier, create_tiered_loader
from story_state.models import ChapterRef
from story_state.reconstruction import StateReconstructor, chapter_key_of, clamp_index
from story_state.state_store import StoryStateStore

CHAPTERS = [ChapterRef(url=f"ch{i}") for i in range(4)]


def _loader(deltas):
    return create_tiered_loader(MemoryTier(), lambda key: deltas.get(key))


def test_clamp_index():
    assert clamp_index(-3, 4) == 0
    assert clamp_index(10, 4) == 3
    assert clamp_index(2, 4) == 2
    assert clamp_index(5, 0) == 0


def test_chapter_key_of_accepts_several_shapes():
    assert chapter_key_of("ch1") == "ch1"
    assert chapter_key_of(ChapterRef(url="ch2")) == "ch2"
    assert chapter_key_of({"url": "ch3", "title": "Three"}) == "ch3"


@pytest.mark.asyncio
async def test_later_chapter_overrides_scalar():
    deltas = {"ch0": {"power": 10}, "ch2": {"power": 5}}
    reconstructor = StateReconstructor()

    assert await reconstructor.rebuild("s", CHAPTERS, 1, _loader(deltas)) == {"power": 10}
    assert await reconstructor.rebuild("s", CHAPTERS, 2, _loader(deltas)) == {"power": 5}


@pytest.mark.asyncio
async def test_characters_merge_across_chapters():
    deltas = {
        "ch0": {"characters": [{"name": "A", "hp": 1}]},
        "ch1": {"characters": [{"name": "A", "mp": 2}, {"name": "B"}]},
    }
    state = await StateReconstructor().rebuild("s", CHAPTERS, 1, _loader(deltas))
    assert state == {"characters": [{"name": "A", "hp": 1, "mp": 2}, {"name": "B"}]}


@pytest.mark.asyncio
async def test_order_follows_chapters_not_completion():
    async def slow_first(key):
        if key == "ch0":
            await asyncio.sleep(0.02)
            return {"power": 1}
        if key == "ch1":
            return {"power": 2}
        return None

    state = await StateReconstructor().rebuild(
        "s", CHAPTERS, 1, create_tiered_loader(slow_first)
    )
    assert state == {"power": 2}


@pytest.mark.asyncio
async def test_target_index_is_clamped_and_cached():
    deltas = {"ch3": {"last": True}}
    reconstructor = StateReconstructor()
    report = await reconstructor.rebuild_with_report("s", CHAPTERS, 99, _loader(deltas))

    assert report.target_index == 3
    assert report.state == {"last": True}
    assert reconstructor.cached_state(3) == {"last": True}


@pytest.mark.asyncio
async def test_empty_chapter_list_returns_base_copy():
    base = {"power": 1}
    reconstructor = StateReconstructor()
    state = await reconstructor.rebuild("s", [], 3, _loader({}), base_state=base)
    assert state == base
    assert state is not base
    assert reconstructor.state_at_chapter == {}


@pytest.mark.asyncio
async def test_report_separates_missing_from_errored():
    def broken(key):
        if key == "ch1":
            raise OSError("offline")
        return None

    deltas = {"ch0": {"a": 1}}
    loader = create_tiered_loader(MemoryTier(), lambda k: deltas.get(k), broken)
    report = await StateReconstructor().rebuild_with_report("s", CHAPTERS, 2, loader)

    assert report.applied == ["ch0"]
    assert report.errored == ["ch1"]
    assert report.missing == ["ch2"]
    assert report.is_degraded
    assert report.state == {"a": 1}


@pytest.mark.asyncio
async def test_plain_loader_exception_is_identity():
    class Flaky:
        async def load(self, key):
            if key == "ch0":
                raise RuntimeError("boom")
            return {"seen": key}

    report = await StateReconstructor().rebuild_with_report("s", CHAPTERS, 1, Flaky())
    assert report.errored == ["ch0"]
    assert report.state == {"seen": "ch1"}


@pytest.mark.asyncio
async def test_rebuild_saves_snapshot(local_store):
    store = StoryStateStore(local_store)
    reconstructor = StateReconstructor(store)
    await reconstructor.rebuild("story-1", CHAPTERS, 0, _loader({"ch0": {"x": 1}}))
    assert store.get("story-1") == {"x": 1}


@pytest.mark.asyncio
async def test_reset_clears_index_cache():
    reconstructor = StateReconstructor()
    await reconstructor.rebuild("s", CHAPTERS, 0, _loader({"ch0": {"x": 1}}))
    reconstructor.reset()
    assert reconstructor.cached_state(0) is None


@pytest.mark.asyncio
async def test_absent_last_delta_contributes_nothing():
    chapters = [ChapterRef(url=u) for u in ("c0", "c1", "c2")]
    deltas = {"c0": {"power": 10}, "c1": {"power": 5}}
    reconstructor = StateReconstructor()

    first = await reconstructor.rebuild("S", chapters, 2, _loader(deltas))
    second = await reconstructor.rebuild("S", chapters, 2, _loader(deltas))
    assert first == {"power": 5}
    assert first == second


@pytest.mark.asyncio
async def test_rebuild_twice_is_deterministic():
    base = {"world": "Azeroth", "characters": [{"name": "A", "hp": 1}]}
    deltas = {
        "ch0": {"characters": [{"name": "A", "hp": 3}, {"title": "narrator"}]},
        "ch1": {"characters": [{"name": "B"}, "cameo"], "power": 7},
    }
    base_before = {"world": "Azeroth", "characters": [{"name": "A", "hp": 1}]}

    first = await StateReconstructor().rebuild("s", CHAPTERS, 1, _loader(deltas), base)
    second = await StateReconstructor().rebuild("s", CHAPTERS, 1, _loader(deltas), base)

    assert first == {
        "world": "Azeroth",
        "characters": [
            {"name": "A", "hp": 3},
            {"title": "narrator"},
            {"name": "B"},
            "cameo",
        ],
        "power": 7,
    }
    assert second == first
    assert base == base_before
