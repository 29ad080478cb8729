# orchestration/sync_engine.py
"""Durable, debounced upload queue for chapter content and chapter deltas."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog
from config import settings
from data_access.remote_store import RemoteStore
from pydantic import ValidationError
from storage.local_store import LocalStore
from story_state.models import StateDict, SyncJob

import storage_keys
from orchestration.auth_state import AuthState

logger = structlog.get_logger(__name__)


class SyncEngine:
    """Ships (chapter content, chapter delta) pairs to the remote store.

    Jobs are identified by (story, chapter). Enqueuing an identity that is
    already queued replaces its payload in place. The queue is processed
    head first; a failing head job is retried with exponential backoff and
    blocks the rest of the queue until it succeeds or exceeds the retry
    budget, at which point it is dropped. The whole queue is written to the
    local store after every mutation so pending jobs survive a restart.

    One instance is meant to exist per process.
    """

    def __init__(
        self,
        remote_store: RemoteStore,
        local_store: LocalStore,
        is_ready: Callable[[], bool],
        debounce_seconds: float = settings.SYNC_DEBOUNCE_SECONDS,
        max_retry: int = settings.SYNC_MAX_RETRY,
        retry_base_seconds: float = settings.SYNC_RETRY_BASE_SECONDS,
        storage_key: str = settings.SYNC_QUEUE_STORAGE_KEY,
    ) -> None:
        self.remote_store = remote_store
        self.local_store = local_store
        self.is_ready = is_ready
        self.debounce_seconds = debounce_seconds
        self.max_retry = max_retry
        self.retry_base_seconds = retry_base_seconds
        self.storage_key = storage_key

        self._queue: list[SyncJob] = []
        self._in_flight: SyncJob | None = None
        self._timer: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        # Event-loop time before which a failed head job must not be retried.
        self._retry_at: float | None = None
        self.scheduled_delay: float | None = None
        self.dropped_count = 0

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending_jobs(self) -> list[SyncJob]:
        return [job.model_copy(deep=True) for job in self._queue]

    @property
    def in_flight(self) -> SyncJob | None:
        return self._in_flight

    def backoff_delay(self, retry_count: int) -> float:
        """Return the wait before retry number ``retry_count`` (1-based)."""
        return self.retry_base_seconds * (2 ** (retry_count - 1))

    # === Queue Operations ===

    def _find_queued(self, identity: str) -> SyncJob | None:
        """Return the newest queued job for ``identity`` that is not uploading."""
        for job in reversed(self._queue):
            if job is not self._in_flight and job.identity == identity:
                return job
        return None

    def _fold_into(self, head: SyncJob) -> None:
        # Later jobs for the head's identity were enqueued while it was
        # uploading; the newest payload moves into the head.
        later = [
            job for job in self._queue if job is not head and job.identity == head.identity
        ]
        if not later:
            return
        head.replace_payload(later[-1])
        for job in later:
            self._remove(job)
        logger.debug(
            "Folded newer payload into retrying sync job",
            identity=head.identity,
            folded=len(later),
        )

    def enqueue(
        self,
        story_key: str,
        chapter_key: str,
        content: str,
        delta: StateDict | None = None,
    ) -> SyncJob:
        """Queue an upload, replacing the payload of a queued job with the same identity."""
        job = SyncJob(
            story_key=story_key, chapter_key=chapter_key, content=content, delta=delta
        )
        existing = self._find_queued(job.identity)
        if existing is not None:
            existing.replace_payload(job)
            job = existing
            logger.debug("Replaced queued sync job payload", identity=job.identity)
        else:
            self._queue.append(job)
            logger.debug("Queued sync job", identity=job.identity, pending=len(self._queue))
        self.persist()
        self.schedule()
        return job

    enqueue_chapter_sync = enqueue

    def persist(self) -> bool:
        """Write the full queue to the local store."""
        snapshot = [job.model_dump(by_alias=True) for job in self._queue]
        return self.local_store.set_item(self.storage_key, snapshot)

    def restore(self) -> int:
        """Load jobs from the persisted snapshot; return how many were added.

        Duplicate identities in the snapshot collapse into the first position
        with the last payload. Identities already queued in memory are kept.
        """
        raw = self.local_store.get_item(self.storage_key)
        if not isinstance(raw, list):
            return 0

        collapsed: dict[str, SyncJob] = {}
        for entry in raw:
            try:
                job = SyncJob.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping malformed persisted sync job", error=str(exc))
                continue
            if job.identity in collapsed:
                collapsed[job.identity].replace_payload(job)
            else:
                collapsed[job.identity] = job

        added = 0
        for identity, job in collapsed.items():
            if self._find_queued(identity) is None:
                self._queue.append(job)
                added += 1
        if added:
            logger.info("Restored pending sync jobs", restored=added)
        return added

    # === Scheduling ===

    def schedule(self, delay: float | None = None) -> None:
        """(Re)start the single flush timer.

        Without an explicit ``delay`` the timer waits for the debounce window,
        or until a pending backoff deadline if that is later.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; flush not scheduled")
            return
        if delay is not None:
            wait = delay
        else:
            wait = self.debounce_seconds
            if self._retry_at is not None:
                wait = max(wait, self._retry_at - loop.time())
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self.scheduled_delay = wait
        self._timer = asyncio.create_task(self._delayed_flush(wait))

    async def _delayed_flush(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach so a later schedule() cannot cancel an upload in progress.
        if self._timer is asyncio.current_task():
            self._timer = None
        await self.flush(wait_for_backoff=True)

    def start(self, auth_state: AuthState | None = None) -> None:
        """Restore the persisted queue, flush on sign-in and schedule a first flush."""
        self.restore()
        if auth_state is not None:
            auth_state.add_listener(self.on_auth_changed)
        self.schedule()

    def on_auth_changed(self, signed_in: bool) -> None:
        if signed_in:
            self.schedule()

    async def aclose(self) -> None:
        """Cancel the pending timer and persist the queue."""
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                logger.debug("Sync timer cancelled")
        self.persist()

    # === Upload ===

    async def _run_job(self, job: SyncJob) -> None:
        chapter_doc_key = storage_keys.chapter_identity(job.story_key, job.chapter_key)
        await self.remote_store.put(
            storage_keys.COLLECTION_CHAPTER_CONTENT,
            chapter_doc_key,
            {"content": job.content},
        )
        if job.delta is not None:
            await self.remote_store.put(
                storage_keys.COLLECTION_CHAPTER_DELTA, chapter_doc_key, job.delta
            )

    def _remove(self, job: SyncJob) -> None:
        for i, queued in enumerate(self._queue):
            if queued is job:
                del self._queue[i]
                return

    async def flush(self, wait_for_backoff: bool = False) -> None:
        """Upload queued jobs head first until the queue is empty or a job must wait.

        Timer-driven flushes pass ``wait_for_backoff`` so that one queued behind
        a failing upload re-arms the timer instead of retrying early.
        """
        async with self._flush_lock:
            if wait_for_backoff and self._retry_at is not None:
                if self._retry_at > asyncio.get_running_loop().time():
                    self.schedule()
                    return
            self._retry_at = None
            while self._queue:
                if not self.is_ready():
                    logger.info(
                        "Remote store not ready; keeping sync queue for later",
                        pending=len(self._queue),
                    )
                    self.persist()
                    return

                job = self._queue[0]
                self._in_flight = job
                try:
                    await self._run_job(job)
                except Exception as exc:
                    job.retry_count += 1
                    if job.retry_count > self.max_retry:
                        logger.warning(
                            "Dropping sync job after repeated failures",
                            identity=job.identity,
                            attempts=job.retry_count,
                            error=str(exc),
                        )
                        self._remove(job)
                        self.dropped_count += 1
                        self.persist()
                        continue
                    self._fold_into(job)
                    delay = self.backoff_delay(job.retry_count)
                    self._retry_at = asyncio.get_running_loop().time() + delay
                    logger.warning(
                        "Sync job failed; retrying later",
                        identity=job.identity,
                        retry=job.retry_count,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    self.persist()
                    self.schedule(delay)
                    return
                finally:
                    self._in_flight = None

                self._remove(job)
                self.persist()
                logger.debug("Sync job uploaded", identity=job.identity)
