# tests/test_tiered_loader.py
import pytest

from story_state.loader import MemoryTier, TieredLoader, create_tiered_loader


class RecordingSource:
    def __init__(self, values=None):
        self.values = values or {}
        self.calls: list[str] = []

    async def load(self, key):
        self.calls.append(key)
        return self.values.get(key)


@pytest.mark.asyncio
async def test_first_hit_wins_and_later_tiers_not_called():
    memory = MemoryTier()
    memory.store("ch1", {"power": 1})
    remote = RecordingSource({"ch1": {"power": 2}})

    loader = create_tiered_loader(memory, remote)
    assert await loader.load("ch1") == {"power": 1}
    assert remote.calls == []


@pytest.mark.asyncio
async def test_hit_in_slower_tier_warms_memory():
    memory = MemoryTier()
    local = RecordingSource()
    remote = RecordingSource({"ch1": {"power": 2}})

    loader = create_tiered_loader(memory, local, remote)
    outcome = await loader.load_with_outcome("ch1")

    assert outcome.hit
    assert outcome.tier == 2
    assert memory.get("ch1") == {"power": 2}

    assert await loader.load("ch1") == {"power": 2}
    assert remote.calls == ["ch1"]


@pytest.mark.asyncio
async def test_raising_tier_counts_as_miss():
    def broken(_key):
        raise OSError("disk gone")

    loader = TieredLoader([broken, lambda key: {"key": key}])
    outcome = await loader.load_with_outcome("ch7")

    assert outcome.value == {"key": "ch7"}
    assert outcome.tier == 1
    assert len(outcome.errors) == 1
    assert outcome.errors[0][0] == 0


@pytest.mark.asyncio
async def test_async_callable_sources_supported():
    async def remote(key):
        return {"from": key}

    loader = create_tiered_loader(MemoryTier(), remote)
    assert await loader.load("x") == {"from": "x"}


@pytest.mark.asyncio
async def test_all_tiers_miss_returns_none():
    loader = create_tiered_loader(MemoryTier(), lambda _k: None)
    outcome = await loader.load_with_outcome("ch1")
    assert outcome.value is None
    assert not outcome.hit
    assert outcome.errors == []


@pytest.mark.asyncio
async def test_non_writable_first_tier_is_not_warmed():
    first = RecordingSource()
    second = RecordingSource({"k": {"a": 1}})
    loader = create_tiered_loader(first, second)
    assert await loader.load("k") == {"a": 1}
    assert await loader.load("k") == {"a": 1}
    assert second.calls == ["k", "k"]


def test_unsupported_source_rejected():
    with pytest.raises(TypeError):
        TieredLoader([42])
