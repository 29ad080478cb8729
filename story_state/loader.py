# story_state/loader.py
"""Read-through lookup of chapter deltas across ordered storage tiers."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from .models import StateDict

logger = structlog.get_logger(__name__)

LoaderFn = Callable[[str], Awaitable[StateDict | None] | StateDict | None]


@runtime_checkable
class DeltaSource(Protocol):
    """A storage tier that can be asked for the delta stored under a key."""

    async def load(self, key: str) -> StateDict | None: ...


@runtime_checkable
class WritableDeltaSource(DeltaSource, Protocol):
    def store(self, key: str, value: StateDict) -> None: ...


class MemoryTier:
    """In-process delta cache for the active story session."""

    def __init__(self) -> None:
        self._items: dict[str, StateDict] = {}

    async def load(self, key: str) -> StateDict | None:
        return self._items.get(key)

    def store(self, key: str, value: StateDict) -> None:
        self._items[key] = value

    def get(self, key: str) -> StateDict | None:
        return self._items.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()


@dataclass
class LoadOutcome:
    """Result of a tiered lookup for one key."""

    key: str
    value: StateDict | None = None
    tier: int | None = None
    errors: list[tuple[int, Exception]] = field(default_factory=list)

    @property
    def hit(self) -> bool:
        return self.value is not None


class _CallableSource:
    def __init__(self, fn: LoaderFn) -> None:
        self._fn = fn

    async def load(self, key: str) -> StateDict | None:
        result = self._fn(key)
        if inspect.isawaitable(result):
            result = await result
        return result


def _as_source(source: DeltaSource | LoaderFn) -> DeltaSource:
    if isinstance(source, DeltaSource):
        return source
    if callable(source):
        return _CallableSource(source)
    raise TypeError(f"Unsupported delta source: {source!r}")


class TieredLoader:
    """Try each source in priority order and return the first hit.

    A hit from any tier after the first is written back into the first tier
    when that tier can store values. A source that raises counts as a miss
    for that tier only.
    """

    def __init__(self, sources: Sequence[DeltaSource | LoaderFn]) -> None:
        self.sources: list[DeltaSource] = [_as_source(s) for s in sources]

    async def load(self, key: str) -> StateDict | None:
        return (await self.load_with_outcome(key)).value

    async def load_with_outcome(self, key: str) -> LoadOutcome:
        outcome = LoadOutcome(key=key)
        for tier, source in enumerate(self.sources):
            try:
                value = await source.load(key)
            except Exception as exc:
                outcome.errors.append((tier, exc))
                logger.warning(
                    "Delta source failed; falling through to next tier",
                    key=key,
                    tier=tier,
                    error=str(exc),
                )
                continue
            if value is None:
                continue
            outcome.value = value
            outcome.tier = tier
            if tier > 0:
                self._write_back(key, value)
            return outcome
        return outcome

    def _write_back(self, key: str, value: StateDict) -> None:
        fastest: Any = self.sources[0] if self.sources else None
        if not isinstance(fastest, WritableDeltaSource):
            return
        try:
            fastest.store(key, value)
        except Exception as exc:
            logger.warning("Failed warming fastest tier", key=key, error=str(exc))


def create_tiered_loader(*sources: DeltaSource | LoaderFn) -> TieredLoader:
    """Build a loader from sources given fastest first."""
    return TieredLoader(list(sources))
