# lineup/services/assignment_writer.py
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional, Set, Tuple

from lineup.adapters.lineup_api import LineupApi
from lineup.config.settings import settings
from lineup.domain.errors import ApiError, AssignmentRejected, SaveFailure, SaveInFlight
from lineup.domain.models import Note, NoteValue
from lineup.infrastructure.record_store import RecordStore
from lineup.services.fields import ASSIGNMENT_FIELD, NOTE_FIELD

logger = logging.getLogger(__name__)


@dataclass
class AssignResult:
    record_id: int
    assignment_key: Optional[int]
    previous_key: Optional[int]
    group_size: int
    over_capacity: bool


class AssignmentWriter:
    """
    Single-field mutations against the server.

    Successful writes patch the record store right away and ask the sync
    scheduler for an early poll; failures are raised as SaveFailure so the
    owning edit session can attach them to the field.
    """

    def __init__(
        self,
        api: LineupApi,
        store: RecordStore,
        capacity: Optional[int] = None,
        on_success: Optional[Callable[[], None]] = None,
    ):
        self.api = api
        self.store = store
        self.capacity = settings.GROUP_CAPACITY if capacity is None else capacity
        self.on_success = on_success
        self._in_flight: Set[Tuple[int, str]] = set()

    def is_in_flight(self, record_id: int, field: str) -> bool:
        return (record_id, field) in self._in_flight

    @contextmanager
    def _guard(self, record_id: int, field: str):
        key = (record_id, field)
        if key in self._in_flight:
            raise SaveInFlight("A save for this field is still in progress", record_id, field)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def _succeeded(self) -> None:
        if self.on_success is not None:
            self.on_success()

    def _patch_note(self, record_id: int, note: Note) -> None:
        # the record may have left the roster while the request was out
        if record_id in self.store:
            self.store.set_note(record_id, note)

    # ------------------------
    # Notes
    # ------------------------

    async def create_note(self, record_id: int, value: NoteValue) -> str:
        with self._guard(record_id, NOTE_FIELD):
            try:
                note_id = await self.api.create_note(record_id, value)
            except ApiError as e:
                raise SaveFailure(e.message, record_id, NOTE_FIELD) from e
        self._patch_note(record_id, Note(content=value.content, color_tag=value.color_tag, note_id=note_id))
        logger.info(f"Created note {note_id} on record {record_id}")
        self._succeeded()
        return note_id

    async def update_note(self, record_id: int, note_id: str, value: NoteValue) -> None:
        with self._guard(record_id, NOTE_FIELD):
            try:
                await self.api.update_note(note_id, value)
            except ApiError as e:
                raise SaveFailure(e.message, record_id, NOTE_FIELD) from e
        self._patch_note(record_id, Note(content=value.content, color_tag=value.color_tag, note_id=note_id))
        logger.info(f"Updated note {note_id} on record {record_id}")
        self._succeeded()

    async def delete_note(self, record_id: int, note_id: str) -> None:
        if not note_id:
            raise SaveFailure("There is no saved note to delete", record_id, NOTE_FIELD)
        with self._guard(record_id, NOTE_FIELD):
            try:
                await self.api.delete_note(note_id)
            except ApiError as e:
                raise SaveFailure(e.message, record_id, NOTE_FIELD) from e
        self._patch_note(record_id, Note())
        logger.info(f"Deleted note {note_id} on record {record_id}")
        self._succeeded()

    # ------------------------
    # Group key
    # ------------------------

    async def assign(self, record_id: int, assignment_key: Optional[int]) -> AssignResult:
        """
        Move a record to another group (None clears the assignment).

        The store is moved before the request goes out so the roster reflects
        the change immediately; a rejected request moves it back.
        """
        record = self.store.get(record_id)
        if record is None:
            raise AssignmentRejected(f"Record {record_id} is not in the roster", record_id, ASSIGNMENT_FIELD)
        if record.is_primary and assignment_key != record.assignment_key:
            raise AssignmentRejected("A group leader cannot be moved to another group", record_id, ASSIGNMENT_FIELD)

        with self._guard(record_id, ASSIGNMENT_FIELD):
            previous = self.store.set_assignment_key(record_id, assignment_key)
            try:
                echoed = await self.api.assign_group(record_id, assignment_key)
            except ApiError as e:
                current = self.store.get(record_id)
                if current is not None and current.assignment_key == assignment_key:
                    self.store.set_assignment_key(record_id, previous)
                raise SaveFailure(e.message, record_id, ASSIGNMENT_FIELD) from e

        if echoed is not None and record_id in self.store:
            self.store.patch(record_id, assignment_key=echoed.assignment_key, group_counts=echoed.group_counts)

        size = self.store.group_size(assignment_key)
        result = AssignResult(
            record_id=record_id,
            assignment_key=assignment_key,
            previous_key=previous,
            group_size=size,
            over_capacity=assignment_key is not None and size > self.capacity,
        )
        if result.over_capacity:
            logger.warning(f"Group {assignment_key} has {size} members (capacity {self.capacity})")
        logger.info(f"Assigned record {record_id}: {previous} -> {assignment_key}")
        self._succeeded()
        return result
