# lineup/services/sync_scheduler.py
"""
Background poller that keeps the record store in step with the server.

A poll fetches the whole roster, replaces the store snapshot and hands every
open edit session the fetched value of its field. A poll that fails is retried
on the next tick; after STALE_AFTER_FAILURES failures in a row the scheduler
reports itself stale until a poll succeeds again.
"""
import asyncio
import logging
from typing import List, Optional, Union

from lineup.adapters.lineup_api import LineupApi
from lineup.config.settings import settings
from lineup.domain.errors import ApiError, ConflictDetected, PersistentSyncFailure, TransientSyncFailure
from lineup.infrastructure.record_store import RecordStore
from lineup.services.edit_sessions import EditSessionRegistry

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        api: LineupApi,
        store: RecordStore,
        sessions: EditSessionRegistry,
        interval: Optional[float] = None,
        stale_after: Optional[int] = None,
    ):
        self.api = api
        self.store = store
        self.sessions = sessions
        self.interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
        self.stale_after = settings.STALE_AFTER_FAILURES if stale_after is None else stale_after

        self.consecutive_failures = 0
        self.last_failure: Optional[Union[TransientSyncFailure, PersistentSyncFailure]] = None
        self.last_conflicts: List[ConflictDetected] = []
        self.polls = 0

        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_stale(self) -> bool:
        return self.consecutive_failures >= self.stale_after

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> bool:
        """
        Run one poll. Returns True when the snapshot was merged.

        A poll already in progress absorbs this one.
        """
        if self._lock.locked():
            return False
        async with self._lock:
            self.polls += 1
            try:
                records = await self.api.fetch_roster()
            except ApiError as e:
                self._failed(e)
                return False

            if self.is_stale:
                logger.info("Roster sync recovered")
            self.consecutive_failures = 0
            self.last_failure = None

            self.store.replace_all(records)
            self.last_conflicts = self.sessions.reconcile(self.store)
            return True

    def _failed(self, error: ApiError) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.stale_after:
            self.last_failure = PersistentSyncFailure(error.message, self.consecutive_failures)
            if self.consecutive_failures == self.stale_after:
                logger.error(f"Roster is stale after {self.consecutive_failures} failed polls: {error.message}")
        else:
            self.last_failure = TransientSyncFailure(error.message)
            logger.warning(f"Poll failed ({self.consecutive_failures}): {error.message}")

    def request_refresh(self) -> None:
        """Ask the running loop for an immediate poll."""
        self._wake.set()

    async def run(self) -> None:
        while True:
            await self.refresh()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())
        logger.info(f"Sync started, polling every {self.interval}s")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync stopped")
