# lineup/services/lineup_controller.py
"""
The one object a presentation layer talks to.

It wires the store, the writer, the edit sessions, the poller and the bulk
coordinator together and exposes them as plain method calls, so rows never
hold callbacks of their own.
"""
import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import httpx

from lineup.adapters.lineup_api import LineupApi
from lineup.config.settings import settings
from lineup.domain.errors import BulkCommitFailure, BulkCommitRefused, BulkPreviewFailure
from lineup.domain.grouping import (
    DestinationGroup,
    Group,
    RosterFilters,
    RosterStats,
    department_options,
    group_by_destination,
    group_records,
    roster_stats,
)
from lineup.domain.models import (
    AssignmentPreview,
    AssignmentStrategy,
    CapacityBasis,
    DestinationCapacity,
    NoteValue,
)
from lineup.infrastructure.record_store import RecordStore
from lineup.services.assignment_writer import AssignmentWriter
from lineup.services.bulk_assignment import BulkAssignmentCoordinator
from lineup.services.edit_session import FieldEditSession, SaveOutcome
from lineup.services.edit_sessions import EditSessionRegistry
from lineup.services.fields import ASSIGNMENT_FIELD, NOTE_FIELD
from lineup.services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)


class LineupController:
    def __init__(
        self,
        api: LineupApi,
        store: Optional[RecordStore] = None,
        capacity: Optional[int] = None,
        debounce_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
        stale_after: Optional[int] = None,
        scheduler=None,
    ):
        self.api = api
        self.store = store if store is not None else RecordStore()
        self.capacity = settings.GROUP_CAPACITY if capacity is None else capacity
        self.filters = RosterFilters()

        self.writer = AssignmentWriter(api, self.store, capacity=self.capacity, on_success=self._request_refresh)
        self.sessions = EditSessionRegistry(
            self.store, self.writer, debounce_seconds=debounce_seconds, scheduler=scheduler
        )
        self.sync = SyncScheduler(api, self.store, self.sessions, interval=poll_interval, stale_after=stale_after)
        self.bulk = BulkAssignmentCoordinator(api, on_committed=self._request_refresh)

    @classmethod
    def create(
        cls,
        base_url: Optional[str] = None,
        retreat_slug: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> "LineupController":
        return cls(LineupApi.create(base_url, retreat_slug, transport=transport), **kwargs)

    def _request_refresh(self) -> None:
        self.sync.request_refresh()

    # ------------------------
    # Lifecycle
    # ------------------------

    async def start(self, background: bool = True) -> None:
        """Load the roster once, then keep polling in the background."""
        await self.sync.refresh()
        if background:
            self.sync.start()

    async def stop(self) -> None:
        await self.sync.stop()
        self.sessions.close_all()
        await self.api.aclose()

    async def __aenter__(self) -> "LineupController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_stale(self) -> bool:
        return self.sync.is_stale

    # ------------------------
    # Views
    # ------------------------

    def set_filters(self, filters: RosterFilters) -> None:
        self.filters = filters

    def groups(self, filters: Optional[RosterFilters] = None) -> List[Group]:
        return group_records(self.store.records(), filters or self.filters, capacity=self.capacity)

    def destination_groups(
        self,
        schedule_ids: Sequence[int] = (),
        capacities: Optional[Mapping[str, DestinationCapacity]] = None,
        filters: Optional[RosterFilters] = None,
    ) -> List[DestinationGroup]:
        return group_by_destination(self.store.records(), schedule_ids, capacities, filters or self.filters)

    def stats(self) -> RosterStats:
        return roster_stats(self.store.records())

    def departments(self) -> List[int]:
        return department_options(self.store.records())

    # ------------------------
    # Field edits
    # ------------------------

    def session(self, record_id: int, field: str) -> Optional[FieldEditSession]:
        return self.sessions.get(record_id, field)

    def begin_edit(self, record_id: int, field: str = NOTE_FIELD) -> FieldEditSession:
        return self.sessions.open(record_id, field)

    def change(self, record_id: int, field: str, raw: Any) -> FieldEditSession:
        session = self.sessions.open(record_id, field)
        session.change(raw)
        return session

    async def save(self, record_id: int, field: str = NOTE_FIELD) -> SaveOutcome:
        return await self.sessions.open(record_id, field).save()

    def cancel(self, record_id: int, field: str = NOTE_FIELD) -> None:
        session = self.sessions.get(record_id, field)
        if session is not None:
            session.cancel()

    def accept_remote(self, record_id: int, field: str = NOTE_FIELD) -> None:
        session = self.sessions.get(record_id, field)
        if session is not None:
            session.accept_remote()

    def keep_editing(self, record_id: int, field: str = NOTE_FIELD) -> None:
        session = self.sessions.get(record_id, field)
        if session is not None:
            session.keep_editing()

    def edit_note(self, record_id: int, content: Optional[str] = None, color_tag: Optional[str] = None) -> FieldEditSession:
        session = self.sessions.open(record_id, NOTE_FIELD)
        current = session.local_value
        session.change(NoteValue(
            content=current.content if content is None else content,
            color_tag=current.color_tag if color_tag is None else color_tag,
        ))
        return session

    async def delete_note(self, record_id: int) -> SaveOutcome:
        return await self.sessions.open(record_id, NOTE_FIELD).delete()

    async def assign(self, record_id: int, raw: Any) -> FieldEditSession:
        """Set a record's group number and save it right away."""
        session = self.sessions.open(record_id, ASSIGNMENT_FIELD)
        session.change(raw)
        if session.error is None:
            outcome = await session.save()
            if outcome == SaveOutcome.SKIPPED:
                session.cancel()
        return session

    # ------------------------
    # Bulk assignment
    # ------------------------

    async def preview_bulk(
        self,
        record_ids: Iterable[int],
        destination_ids: Iterable[int],
        strategy: AssignmentStrategy = AssignmentStrategy.SAME_GBS_SAME_DORMITORY,
        capacity_basis: CapacityBasis = CapacityBasis.OPTIMAL,
    ) -> Optional[AssignmentPreview]:
        self.bulk.select(record_ids, destination_ids, strategy, capacity_basis)
        try:
            return await self.bulk.request_preview()
        except BulkPreviewFailure as e:
            logger.warning(f"Bulk preview failed: {e.message}")
            return None

    async def commit_bulk(self) -> bool:
        try:
            await self.bulk.commit()
        except (BulkCommitRefused, BulkCommitFailure) as e:
            logger.warning(f"Bulk commit not applied: {e.message}")
            return False
        return True
