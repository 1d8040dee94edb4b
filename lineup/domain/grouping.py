# lineup/domain/grouping.py
"""
Pure grouping logic for the lineup roster.

Everything here is a function of a list of records plus options; nothing is
cached between calls, so group membership always reflects the snapshot that
was passed in.

Functions included:
- filter_records
- sort_members
- group_records
- group_by_destination
- roster_stats
- department_options
"""
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from pyuca import Collator

from lineup.config.settings import settings
from lineup.domain.models import DestinationCapacity, GroupCounts, Record


@dataclass
class RosterFilters:
    unassigned_only: bool = False
    departments: FrozenSet[int] = frozenset()
    include_schedules: FrozenSet[int] = frozenset()
    exclude_schedules: FrozenSet[int] = frozenset()
    search: str = ""


@dataclass(frozen=True)
class Group:
    key: Optional[int]
    members: Tuple[Record, ...]
    capacity: int = 6

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def over_capacity(self) -> bool:
        return self.size > self.capacity

    @property
    def is_unassigned(self) -> bool:
        return self.key is None

    @property
    def counts(self) -> GroupCounts:
        # the server copies the group aggregates onto each member
        return self.members[0].group_counts if self.members else GroupCounts()


class CapacityStatus(str, Enum):
    WARNING = "WARNING"
    OVER = "OVER"


@dataclass(frozen=True)
class DestinationGroup:
    destination: Optional[str]
    members: Tuple[Record, ...]
    schedule_counts: Dict[int, int] = field(default_factory=dict)
    occupancy: int = 0
    key_summary: Dict[Optional[int], int] = field(default_factory=dict)
    capacity_status: Optional[CapacityStatus] = None

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class RosterStats:
    total: int
    assigned: int
    unassigned: int


# ----------------------------
# Filters
# ----------------------------

def _matches_search(record: Record, needle: str) -> bool:
    fields = [
        record.name,
        str(record.department),
        str(record.grade),
        record.record_type,
        record.note.content,
    ]
    return any(f and needle in f.casefold() for f in fields)


def filter_records(records: Iterable[Record], filters: Optional[RosterFilters] = None) -> List[Record]:
    """
    Apply the filter pipeline in order: unassigned toggle, department
    allow-list, schedule include/exclude sets, free-text search.
    """
    result = list(records)
    if filters is None:
        return result

    if filters.unassigned_only:
        result = [r for r in result if r.assignment_key is None]

    if filters.departments:
        result = [r for r in result if r.department in filters.departments]

    if filters.include_schedules or filters.exclude_schedules:
        result = [
            r for r in result
            if all(r.has_schedule(s) for s in filters.include_schedules)
            and not any(r.has_schedule(s) for s in filters.exclude_schedules)
        ]

    needle = filters.search.strip().casefold()
    if needle:
        result = [r for r in result if _matches_search(r, needle)]

    return result


# ----------------------------
# Sorting
# ----------------------------

_collator = Collator()

# Korean collation moves Hangul ahead of every other script; spaces,
# punctuation, symbols and digits keep their place in front.
_HANGUL_JAMO_BLOCKS = ((0x1100, 0x11FF), (0xA960, 0xA97F), (0xD7B0, 0xD7FF))


def _primary_weights(key: Tuple[int, ...]) -> Tuple[int, ...]:
    return key[:key.index(0)] if 0 in key else key


def _hangul_primary_range() -> Tuple[int, int]:
    weights = [
        w
        for lo, hi in _HANGUL_JAMO_BLOCKS
        for cp in range(lo, hi + 1)
        if unicodedata.category(chr(cp)) != "Cn"
        for w in _primary_weights(_collator.sort_key(chr(cp)))
    ]
    return min(weights), max(weights)


_HANGUL_FIRST, _HANGUL_LAST = _hangul_primary_range()
_SCRIPTS_START = _primary_weights(_collator.sort_key("a"))[0]
_HANGUL_SPAN = _HANGUL_LAST - _HANGUL_FIRST + 1


def _korean_primary(weight: int) -> int:
    if _HANGUL_FIRST <= weight <= _HANGUL_LAST:
        return _SCRIPTS_START + weight - _HANGUL_FIRST
    if weight >= _SCRIPTS_START:
        return weight + _HANGUL_SPAN
    return weight


def name_sort_key(name: str) -> Tuple[Tuple[int, ...], str]:
    """
    Korean-locale collation key for display names.

    Hangul sorts before Latin, lower case before upper case, and the
    remaining levels follow the Unicode Collation Algorithm.

    Example:
    >>> sorted(["Kim", "kim", "Lee", "김", "이"], key=name_sort_key)
    ['김', '이', 'kim', 'Kim', 'Lee']
    """
    text = unicodedata.normalize("NFC", name or "")
    key = tuple(_collator.sort_key(text))
    primaries = _primary_weights(key)
    return tuple(_korean_primary(w) for w in primaries) + key[len(primaries):], text


def member_sort_key(record: Record):
    return (not record.is_primary, -record.grade, name_sort_key(record.name), record.id)


def sort_members(members: Iterable[Record]) -> List[Record]:
    """Primary first, then higher grade first, then name."""
    return sorted(members, key=member_sort_key)


# ----------------------------
# Grouping
# ----------------------------

def group_records(
    records: Iterable[Record],
    filters: Optional[RosterFilters] = None,
    capacity: Optional[int] = None,
) -> List[Group]:
    """
    Bucket the filtered records by assignment key.

    Groups come back in ascending key order. Unassigned records are not
    merged: each one becomes its own singleton group, placed after every
    keyed group.

    Example:
    >>> [g.key for g in group_records([Record(id=1, name="a", assignment_key=3),
    ...                                Record(id=2, name="b"),
    ...                                Record(id=3, name="c", assignment_key=1)])]
    [1, 3, None]
    """
    capacity = settings.GROUP_CAPACITY if capacity is None else capacity
    buckets: Dict[int, List[Record]] = {}
    singletons: List[Record] = []

    for record in filter_records(records, filters):
        if record.assignment_key is None:
            singletons.append(record)
        else:
            buckets.setdefault(record.assignment_key, []).append(record)

    groups = [
        Group(key=key, members=tuple(sort_members(buckets[key])), capacity=capacity)
        for key in sorted(buckets)
    ]
    groups.extend(
        Group(key=None, members=(record,), capacity=capacity)
        for record in sort_members(singletons)
    )
    return groups


def _destination_sort_key(destination: Optional[str]):
    return (destination is None, name_sort_key(destination or ""))


def _destination_member_key(record: Record):
    key = record.assignment_key
    return (key is None, key if key is not None else 0, -record.grade, name_sort_key(record.name), record.id)


def capacity_status(occupancy: int, capacity: Optional[DestinationCapacity]) -> Optional[CapacityStatus]:
    if capacity is None:
        return None
    if occupancy > capacity.effective_max:
        return CapacityStatus.OVER
    if occupancy > capacity.optimal_capacity:
        return CapacityStatus.WARNING
    return None


def group_by_destination(
    records: Iterable[Record],
    schedule_ids: Sequence[int] = (),
    capacities: Optional[Mapping[str, DestinationCapacity]] = None,
    filters: Optional[RosterFilters] = None,
) -> List[DestinationGroup]:
    """
    Alternate grouping mode: one group per destination (room).

    For each schedule the rollup counts members present that night. Occupancy
    is the maximum of those counts, because one person holds one bed no matter
    how many nights they stay. Without schedules occupancy is the member count.
    """
    capacities = capacities or {}
    buckets: Dict[Optional[str], List[Record]] = {}
    for record in filter_records(records, filters):
        destination = (record.destination or "").strip() or None
        buckets.setdefault(destination, []).append(record)

    result = []
    for destination in sorted(buckets, key=_destination_sort_key):
        members = sorted(buckets[destination], key=_destination_member_key)
        schedule_counts = {
            sid: sum(1 for r in members if r.has_schedule(sid)) for sid in schedule_ids
        }
        occupancy = max(schedule_counts.values()) if schedule_counts else len(members)

        key_summary: Dict[Optional[int], int] = {}
        for r in members:
            key_summary[r.assignment_key] = key_summary.get(r.assignment_key, 0) + 1

        status = None
        if destination is not None:
            status = capacity_status(occupancy, capacities.get(destination))

        result.append(DestinationGroup(
            destination=destination,
            members=tuple(members),
            schedule_counts=schedule_counts,
            occupancy=occupancy,
            key_summary=key_summary,
            capacity_status=status,
        ))
    return result


# ----------------------------
# Roster level helpers
# ----------------------------

def roster_stats(records: Iterable[Record]) -> RosterStats:
    records = list(records)
    assigned = sum(1 for r in records if r.assignment_key is not None)
    return RosterStats(total=len(records), assigned=assigned, unassigned=len(records) - assigned)


def department_options(records: Iterable[Record]) -> List[int]:
    return sorted({r.department for r in records})
