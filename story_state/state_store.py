# story_state/state_store.py
"""Per-story cumulative state snapshots on the local and remote tiers."""

from __future__ import annotations

from collections.abc import Callable

import structlog

import storage_keys
from data_access.remote_store import RemoteStore
from storage.local_store import LocalStore

from .models import StateDict

logger = structlog.get_logger(__name__)


class StoryStateStore:
    """Load and save the cumulative state snapshot of each story.

    The snapshot is a derived cache; chapter deltas stay authoritative.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore | None = None,
        is_ready: Callable[[], bool] = lambda: False,
    ) -> None:
        self.local_store = local_store
        self.remote_store = remote_store
        self.is_ready = is_ready

    def get(self, story_key: str) -> StateDict | None:
        state = self.local_store.get_item(storage_keys.story_state_key(story_key))
        return state if isinstance(state, dict) else None

    def save(self, story_key: str, state: StateDict) -> bool:
        return self.local_store.set_item(storage_keys.story_state_key(story_key), state)

    def clear(self, story_key: str) -> bool:
        return self.local_store.remove_item(storage_keys.story_state_key(story_key))

    async def push(self, story_key: str, state: StateDict) -> bool:
        """Upload the snapshot; failures are logged, never raised."""
        if self.remote_store is None or not self.is_ready():
            return False
        try:
            await self.remote_store.put(
                storage_keys.COLLECTION_STORY_STATE, story_key, state
            )
            return True
        except Exception as exc:
            logger.error(
                "Saving cumulative story state remotely failed",
                story_key=story_key,
                error=str(exc),
            )
            return False

    async def load(self, story_key: str) -> StateDict | None:
        """Return the local snapshot, falling back to the remote copy."""
        state = self.get(story_key)
        if state is not None:
            return state
        if self.remote_store is None or not self.is_ready():
            return None
        try:
            remote_state = await self.remote_store.get(
                storage_keys.COLLECTION_STORY_STATE, story_key
            )
        except Exception as exc:
            logger.error(
                "Loading cumulative story state remotely failed",
                story_key=story_key,
                error=str(exc),
            )
            return None
        if isinstance(remote_state, dict):
            self.save(story_key, remote_state)
            return remote_state
        return None
