# lineup/domain/models.py
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class AssignmentStrategy(str, Enum):
    SAME_GBS_SAME_DORMITORY = "SAME_GBS_SAME_DORMITORY"
    RANDOM = "RANDOM"


class CapacityBasis(str, Enum):
    OPTIMAL = "OPTIMAL"
    MAX = "MAX"


class NoteValue(BaseModel):
    """The editable part of a note: what the operator types and the color chip."""

    content: str = ""
    color_tag: Optional[str] = None

    class Config:
        frozen = True

    def normalized(self) -> "NoteValue":
        content = (self.content or "").strip()
        color = (self.color_tag or "").strip() or None
        return NoteValue(content=content, color_tag=color)

    def is_empty(self) -> bool:
        value = self.normalized()
        return not value.content and value.color_tag is None


class Note(BaseModel):
    content: str = ""
    color_tag: Optional[str] = None
    note_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def value(self) -> NoteValue:
        return NoteValue(content=self.content, color_tag=self.color_tag).normalized()


class GroupCounts(BaseModel):
    """Group-level aggregates the server copies onto every member of a group."""

    male: int = 0
    female: int = 0
    full_attendance: int = 0
    partial_attendance: int = 0

    class Config:
        frozen = True


class Record(BaseModel):
    id: int
    name: str
    assignment_key: Optional[int] = None
    is_primary: bool = False
    department: int = 0
    gender: Gender = Gender.MALE
    grade: int = 0
    record_type: Optional[str] = None
    schedule_ids: FrozenSet[int] = Field(default_factory=frozenset)
    note: Note = Field(default_factory=Note)
    group_counts: GroupCounts = Field(default_factory=GroupCounts)
    phone_number: Optional[str] = None
    destination: Optional[str] = None
    current_leader: Optional[str] = None
    is_full_attendance: bool = False

    class Config:
        frozen = True

    def has_schedule(self, schedule_id: int) -> bool:
        return schedule_id in self.schedule_ids

    @property
    def is_assigned(self) -> bool:
        return self.assignment_key is not None


class DestinationCapacity(BaseModel):
    name: str
    optimal_capacity: int
    max_capacity: Optional[int] = None

    @property
    def effective_max(self) -> int:
        return self.max_capacity if self.max_capacity is not None else self.optimal_capacity


class ProposedAssignment(BaseModel):
    record_id: int
    destination_id: int
    destination_name: str = ""
    assignment_key: Optional[int] = None
    department: int = 0
    grade: int = 0
    name: str = ""

    class Config:
        frozen = True


class AssignmentPreview(BaseModel):
    strategy: AssignmentStrategy
    capacity_basis: CapacityBasis
    is_assignable: bool
    assignments: List[ProposedAssignment] = Field(default_factory=list)

    def mapping(self) -> Dict[int, int]:
        return {a.record_id: a.destination_id for a in self.assignments}
