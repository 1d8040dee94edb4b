# tests/helpers.py
"""
Shared test doubles: a manual clock for debounce timing and an in-process
stand-in for LineupApi that records every call.
"""
import asyncio
from typing import Dict, List, Optional

from lineup.domain.errors import ApiError
from lineup.domain.models import AssignmentPreview, Note, NoteValue, ProposedAssignment, Record


def make_record(record_id: int, **fields) -> Record:
    fields.setdefault("name", f"Member {record_id}")
    return Record(id=record_id, **fields)


class _Handle:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """call_later() compatible clock that only moves when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self._handles: List[_Handle] = []

    def call_later(self, delay: float, callback) -> _Handle:
        handle = _Handle(self.now + delay, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


class FakeApi:
    """Keeps its own copy of the roster the way the server would."""

    def __init__(self, records=()):
        self.records: Dict[int, Record] = {r.id: r for r in records}
        self.calls: List[tuple] = []
        self.next_note_id = 100
        self.fail_fetch = False
        self.fail_writes = False
        self.gate: Optional[asyncio.Event] = None
        # holds writes only, so polls can run while a save is open
        self.write_gate: Optional[asyncio.Event] = None
        self.preview: Optional[AssignmentPreview] = None
        self.closed = False

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()

    async def _wait_write(self):
        await self._wait()
        if self.write_gate is not None:
            await self.write_gate.wait()

    def _write(self):
        if self.fail_writes:
            raise ApiError("Server rejected the change", status_code=500)

    async def fetch_roster(self) -> List[Record]:
        self.calls.append(("fetch_roster",))
        await self._wait()
        if self.fail_fetch:
            raise ApiError("Service unavailable", status_code=503)
        return [self.records[k] for k in sorted(self.records)]

    async def create_note(self, record_id: int, value: NoteValue) -> str:
        self.calls.append(("create_note", record_id, value))
        await self._wait_write()
        self._write()
        note_id = str(self.next_note_id)
        self.next_note_id += 1
        self.set_note(record_id, value.content, value.color_tag, note_id)
        return note_id

    async def update_note(self, note_id: str, value: NoteValue) -> None:
        self.calls.append(("update_note", note_id, value))
        await self._wait_write()
        self._write()
        for record in list(self.records.values()):
            if record.note.note_id == note_id:
                self.set_note(record.id, value.content, value.color_tag, note_id)

    async def delete_note(self, note_id: str) -> None:
        self.calls.append(("delete_note", note_id))
        await self._wait_write()
        self._write()
        for record in list(self.records.values()):
            if record.note.note_id == note_id:
                self.records[record.id] = record.model_copy(update={"note": Note()})

    async def assign_group(self, record_id: int, assignment_key: Optional[int]) -> Optional[Record]:
        self.calls.append(("assign_group", record_id, assignment_key))
        await self._wait_write()
        self._write()
        self.records[record_id] = self.records[record_id].model_copy(update={"assignment_key": assignment_key})
        return None

    async def preview_bulk_assignment(self, record_ids, destination_ids, strategy, capacity_basis):
        self.calls.append(("preview_bulk_assignment", frozenset(record_ids), frozenset(destination_ids)))
        self._write()
        if self.preview is not None:
            return self.preview
        destination = min(destination_ids)
        return AssignmentPreview(
            strategy=strategy,
            capacity_basis=capacity_basis,
            is_assignable=True,
            assignments=[ProposedAssignment(record_id=r, destination_id=destination) for r in sorted(record_ids)],
        )

    async def commit_bulk_assignment(self, mapping: Dict[int, int]) -> None:
        self.calls.append(("commit_bulk_assignment", dict(mapping)))
        self._write()

    async def aclose(self) -> None:
        self.closed = True

    # server-side edits made by "another operator"
    def set_note(self, record_id: int, content: str, color_tag: Optional[str] = None, note_id: Optional[str] = None):
        record = self.records[record_id]
        note_id = note_id or record.note.note_id or str(self.next_note_id)
        self.records[record_id] = record.model_copy(
            update={"note": Note(content=content, color_tag=color_tag, note_id=note_id)}
        )

    def remove(self, record_id: int) -> None:
        del self.records[record_id]
