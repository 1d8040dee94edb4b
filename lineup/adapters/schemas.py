# lineup/adapters/schemas.py
"""
Wire shapes exchanged with the lineup server.

Field names follow the server's camelCase JSON; Python code reads and writes
the snake_case attribute names and converts to the domain models here.
"""
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from lineup.domain.models import (
    AssignmentPreview,
    AssignmentStrategy,
    CapacityBasis,
    Gender,
    GroupCounts,
    Note,
    ProposedAssignment,
    Record,
)


class WireModel(BaseModel):
    class Config:
        populate_by_name = True

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class RecordDTO(WireModel):
    id: int
    user_id: Optional[int] = Field(default=None, alias="userId")
    name: str
    gbs_number: Optional[int] = Field(default=None, alias="gbsNumber")
    is_leader: bool = Field(default=False, alias="isLeader")
    univ_group_number: int = Field(default=0, alias="univGroupNumber")
    grade_number: int = Field(default=0, alias="gradeNumber")
    gender: Gender = Gender.MALE
    user_type: Optional[str] = Field(default=None, alias="userType")
    schedule_ids: List[int] = Field(default_factory=list, alias="userRetreatRegistrationScheduleIds")
    lineup_memo: Optional[str] = Field(default=None, alias="lineupMemo")
    lineup_memo_color: Optional[str] = Field(default=None, alias="lineupMemocolor")
    lineup_memo_id: Optional[str] = Field(default=None, alias="lineupMemoId")
    total_count: int = Field(default=0, alias="totalCount")
    male_count: int = Field(default=0, alias="maleCount")
    female_count: int = Field(default=0, alias="femaleCount")
    full_attendance_count: int = Field(default=0, alias="fullAttendanceCount")
    partial_attendance_count: int = Field(default=0, alias="partialAttendanceCount")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    current_leader: Optional[str] = Field(default=None, alias="currentLeader")
    is_full_attendance: bool = Field(default=False, alias="isFullAttendance")
    dormitory_location: Optional[str] = Field(default=None, alias="dormitoryLocation")

    @field_validator("lineup_memo_id", mode="before")
    @classmethod
    def _memo_id_as_text(cls, v):
        # server sends numeric ids; keep them opaque
        if v is None or v == "":
            return None
        return str(v)

    def to_record(self) -> Record:
        return Record(
            id=self.id,
            name=self.name,
            assignment_key=self.gbs_number,
            is_primary=self.is_leader,
            department=self.univ_group_number,
            gender=self.gender,
            grade=self.grade_number,
            record_type=self.user_type,
            schedule_ids=frozenset(self.schedule_ids),
            note=Note(
                content=self.lineup_memo or "",
                color_tag=self.lineup_memo_color or None,
                note_id=self.lineup_memo_id,
            ),
            group_counts=GroupCounts(
                male=self.male_count,
                female=self.female_count,
                full_attendance=self.full_attendance_count,
                partial_attendance=self.partial_attendance_count,
            ),
            phone_number=self.phone_number,
            destination=self.dormitory_location,
            current_leader=self.current_leader,
            is_full_attendance=self.is_full_attendance,
        )

    @classmethod
    def from_record(cls, record: Record) -> "RecordDTO":
        counts = record.group_counts
        return cls(
            id=record.id,
            name=record.name,
            gbs_number=record.assignment_key,
            is_leader=record.is_primary,
            univ_group_number=record.department,
            grade_number=record.grade,
            gender=record.gender,
            user_type=record.record_type,
            schedule_ids=sorted(record.schedule_ids),
            lineup_memo=record.note.content,
            lineup_memo_color=record.note.color_tag,
            lineup_memo_id=record.note.note_id,
            total_count=counts.male + counts.female,
            male_count=counts.male,
            female_count=counts.female,
            full_attendance_count=counts.full_attendance,
            partial_attendance_count=counts.partial_attendance,
            phone_number=record.phone_number,
            current_leader=record.current_leader,
            is_full_attendance=record.is_full_attendance,
            dormitory_location=record.destination,
        )


class RosterResponse(WireModel):
    # required; a body without it is malformed
    lineups: List[RecordDTO] = Field(alias="userRetreatGbsLineups")


class NoteRequest(WireModel):
    memo: str
    color: Optional[str] = None


class NoteResponse(WireModel):
    id: Union[int, str]


class AssignGroupRequest(WireModel):
    record_id: int = Field(alias="userRetreatRegistrationId")
    gbs_number: Optional[int] = Field(default=None, alias="gbsNumber")


class PreviewRequest(WireModel):
    record_ids: List[int] = Field(alias="userRetreatRegistrationIds")
    destination_ids: List[int] = Field(alias="dormitoryIds")
    strategy: AssignmentStrategy = Field(alias="assignmentStrategy")
    capacity_basis: CapacityBasis = Field(alias="capacityBasis")


class PreviewAssignmentDTO(WireModel):
    record_id: int = Field(alias="userRetreatRegistrationId")
    destination_id: int = Field(alias="dormitoryId")
    destination_name: str = Field(default="", alias="dormitoryName")
    gbs_number: Optional[int] = Field(default=None, alias="gbsNumber")
    univ_group_number: int = Field(default=0, alias="univGroupNumber")
    grade_number: int = Field(default=0, alias="gradeNumber")
    user_name: str = Field(default="", alias="userName")


class PreviewDTO(WireModel):
    capacity_basis: CapacityBasis = Field(alias="capacityBasis")
    strategy: AssignmentStrategy = Field(alias="assignmentStrategy")
    is_assignable: bool = Field(alias="isAssignable")
    assignments: List[PreviewAssignmentDTO] = Field(default_factory=list, alias="previewAssignments")

    def to_preview(self) -> AssignmentPreview:
        return AssignmentPreview(
            strategy=self.strategy,
            capacity_basis=self.capacity_basis,
            is_assignable=self.is_assignable,
            assignments=[
                ProposedAssignment(
                    record_id=a.record_id,
                    destination_id=a.destination_id,
                    destination_name=a.destination_name,
                    assignment_key=a.gbs_number,
                    department=a.univ_group_number,
                    grade=a.grade_number,
                    name=a.user_name,
                )
                for a in self.assignments
            ],
        )


class PreviewResponse(WireModel):
    preview: PreviewDTO


class BulkAssignItem(WireModel):
    record_id: int = Field(alias="userRetreatRegistrationId")
    destination_id: int = Field(alias="dormitoryId")


class BulkAssignRequest(WireModel):
    assignments: List[BulkAssignItem]
