# lineup/services/fields.py
"""
Editable fields of a roster record.

Each field knows how to read its value from a record, coerce operator input,
decide whether a value is worth sending, and persist it through the writer.
The edit session state machine is shared by all of them.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from lineup.domain.models import NoteValue, Record

if TYPE_CHECKING:
    from lineup.services.assignment_writer import AssignmentWriter

NOTE_FIELD = "note"
ASSIGNMENT_FIELD = "assignment_key"


@dataclass
class PersistResult:
    note_id: Optional[str] = None
    warning: Optional[str] = None


class EditableField:
    name: str = ""
    supports_delete: bool = False

    def read(self, record: Record) -> Any:
        raise NotImplementedError

    def coerce(self, raw: Any, current: Any) -> Any:
        """Turn operator input into a field value. Raises ValueError for bad input."""
        return raw

    def same(self, a: Any, b: Any) -> bool:
        return a == b

    def is_sendable(self, value: Any, baseline: Any) -> bool:
        return not self.same(value, baseline)

    async def persist(self, writer: "AssignmentWriter", record_id: int, value: Any,
                      note_id: Optional[str]) -> PersistResult:
        raise NotImplementedError


class NoteField(EditableField):
    name = NOTE_FIELD
    supports_delete = True

    def read(self, record: Record) -> NoteValue:
        return record.note.value

    def coerce(self, raw: Any, current: NoteValue) -> NoteValue:
        if isinstance(raw, NoteValue):
            return raw
        if isinstance(raw, str):
            # typing keeps the color chip that was already picked
            return NoteValue(content=raw, color_tag=current.color_tag if current else None)
        raise ValueError("A note is text with an optional color tag")

    def same(self, a: NoteValue, b: NoteValue) -> bool:
        return a.normalized() == b.normalized()

    def is_sendable(self, value: NoteValue, baseline: NoteValue) -> bool:
        # whitespace-only content without a color is never sent
        if value.is_empty():
            return False
        return not self.same(value, baseline)

    async def persist(self, writer, record_id, value, note_id):
        value = value.normalized()
        if note_id:
            await writer.update_note(record_id, note_id, value)
            return PersistResult(note_id=note_id)
        created = await writer.create_note(record_id, value)
        return PersistResult(note_id=created)


class AssignmentKeyField(EditableField):
    name = ASSIGNMENT_FIELD

    def read(self, record: Record) -> Optional[int]:
        return record.assignment_key

    def coerce(self, raw: Any, current: Optional[int]) -> Optional[int]:
        if raw is None:
            return None
        if isinstance(raw, bool):
            raise ValueError("Enter a group number")
        if isinstance(raw, int):
            return raw
        text = str(raw).strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            raise ValueError("Enter a group number") from None

    async def persist(self, writer, record_id, value, note_id):
        result = await writer.assign(record_id, value)
        warning = None
        if result.over_capacity:
            warning = f"Group {result.assignment_key} now has {result.group_size} members"
        return PersistResult(warning=warning)


FIELDS: Dict[str, EditableField] = {
    NOTE_FIELD: NoteField(),
    ASSIGNMENT_FIELD: AssignmentKeyField(),
}


def get_field(name: str) -> EditableField:
    try:
        return FIELDS[name]
    except KeyError:
        raise ValueError(f"Unknown field: {name}") from None
