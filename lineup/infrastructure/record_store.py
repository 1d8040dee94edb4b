# lineup/infrastructure/record_store.py
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from lineup.domain.models import Note, Record

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    added: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class RecordStore:
    """
    In-memory snapshot of every record in the current roster context.

    Only the sync scheduler (whole-snapshot merges) and the assignment writer
    (single-field patches after a successful mutation) write to it. Everything
    else reads.
    """

    def __init__(self, records: Iterable[Record] = ()):
        self._records: Dict[int, Record] = {r.id: r for r in records}
        self.version = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: int) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records())

    def get(self, record_id: int) -> Optional[Record]:
        return self._records.get(record_id)

    def require(self, record_id: int) -> Record:
        record = self._records.get(record_id)
        if record is None:
            raise KeyError(f"Record {record_id} is not in the roster")
        return record

    def records(self) -> List[Record]:
        return [self._records[k] for k in sorted(self._records)]

    def group_size(self, assignment_key: Optional[int]) -> int:
        if assignment_key is None:
            return 0
        return sum(1 for r in self._records.values() if r.assignment_key == assignment_key)

    def replace_all(self, records: Iterable[Record]) -> MergeResult:
        """Replace the snapshot with a freshly fetched one."""
        incoming = {r.id: r for r in records}
        result = MergeResult()
        for rid, record in incoming.items():
            current = self._records.get(rid)
            if current is None:
                result.added.append(rid)
            elif current != record:
                result.updated.append(rid)
        result.removed = [rid for rid in self._records if rid not in incoming]

        self._records = incoming
        if result.changed:
            self.version += 1
            logger.debug(
                f"Snapshot merged: +{len(result.added)} ~{len(result.updated)} -{len(result.removed)}"
            )
        return result

    def patch(self, record_id: int, **changes) -> Record:
        record = self.require(record_id).model_copy(update=changes)
        self._records[record_id] = record
        self.version += 1
        return record

    def set_assignment_key(self, record_id: int, assignment_key: Optional[int]) -> Optional[int]:
        """Move a record to another group. Returns the key it had before."""
        previous = self.require(record_id).assignment_key
        self.patch(record_id, assignment_key=assignment_key)
        return previous

    def set_note(self, record_id: int, note: Note) -> Record:
        return self.patch(record_id, note=note)
