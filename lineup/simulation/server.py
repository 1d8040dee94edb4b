# lineup/simulation/server.py
"""
In-memory lineup server for local runs and end-to-end tests.

Implements the roster, note, group-key and dormitory endpoints the client
speaks to. Writes are last-write-wins; a bulk commit is validated in full
before any record changes.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request

from lineup.adapters.schemas import (
    AssignGroupRequest,
    BulkAssignRequest,
    NoteRequest,
    PreviewAssignmentDTO,
    PreviewDTO,
    PreviewRequest,
    RecordDTO,
    RosterResponse,
)
from lineup.domain.models import (
    AssignmentStrategy,
    CapacityBasis,
    DestinationCapacity,
    Gender,
    GroupCounts,
    Note,
    Record,
)

logger = logging.getLogger(__name__)


@dataclass
class Dormitory:
    id: int
    name: str
    optimal_capacity: int
    max_capacity: Optional[int] = None

    def capacity(self, basis: CapacityBasis) -> int:
        limits = DestinationCapacity(name=self.name, optimal_capacity=self.optimal_capacity,
                                     max_capacity=self.max_capacity)
        return limits.effective_max if basis == CapacityBasis.MAX else limits.optimal_capacity


@dataclass
class RosterState:
    records: Dict[int, Record] = field(default_factory=dict)
    dormitories: Dict[int, Dormitory] = field(default_factory=dict)
    next_note_id: int = 1
    # while set, the roster fetch answers 503
    unavailable: bool = False

    def add_record(self, record: Record) -> None:
        self.records[record.id] = record

    def add_dormitory(self, dormitory: Dormitory) -> None:
        self.dormitories[dormitory.id] = dormitory

    def require(self, record_id: int) -> Record:
        record = self.records.get(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Registration {record_id} not found")
        return record

    def find_note(self, note_id: str) -> Record:
        for record in self.records.values():
            if record.note.note_id == note_id:
                return record
        raise HTTPException(status_code=404, detail=f"Memo {note_id} not found")

    def update(self, record_id: int, **changes) -> Record:
        record = self.require(record_id).model_copy(update=changes)
        self.records[record_id] = record
        return record

    def group_counts(self, key: Optional[int]) -> GroupCounts:
        if key is None:
            return GroupCounts()
        members = [r for r in self.records.values() if r.assignment_key == key]
        full = sum(1 for r in members if r.is_full_attendance)
        return GroupCounts(
            male=sum(1 for r in members if r.gender == Gender.MALE),
            female=sum(1 for r in members if r.gender == Gender.FEMALE),
            full_attendance=full,
            partial_attendance=len(members) - full,
        )

    def snapshot(self) -> List[Record]:
        counts: Dict[Optional[int], GroupCounts] = {}
        result = []
        for rid in sorted(self.records):
            record = self.records[rid]
            if record.assignment_key not in counts:
                counts[record.assignment_key] = self.group_counts(record.assignment_key)
            result.append(record.model_copy(update={"group_counts": counts[record.assignment_key]}))
        return result

    def occupants(self, dormitory: Dormitory, excluding=()) -> int:
        return sum(
            1 for r in self.records.values()
            if r.destination == dormitory.name and r.id not in excluding
        )


def get_state(request: Request) -> RosterState:
    return request.app.state.roster


# ----------------------------
# Preview planning
# ----------------------------

def _preview_order(records: List[Record], req: PreviewRequest) -> List[Record]:
    if req.strategy == AssignmentStrategy.RANDOM:
        ordered = sorted(records, key=lambda r: r.id)
        seed = ",".join(str(i) for i in sorted(req.record_ids)) + "|" + ",".join(str(i) for i in sorted(req.destination_ids))
        random.Random(seed).shuffle(ordered)
        return ordered
    return sorted(
        records,
        key=lambda r: (r.assignment_key is None, r.assignment_key or 0, -r.grade, r.name, r.id),
    )


def plan_preview(state: RosterState, req: PreviewRequest) -> PreviewDTO:
    records = [state.require(rid) for rid in req.record_ids]
    dormitories = []
    for did in req.destination_ids:
        dormitory = state.dormitories.get(did)
        if dormitory is None:
            raise HTTPException(status_code=404, detail=f"Dormitory {did} not found")
        dormitories.append(dormitory)

    moving = set(req.record_ids)
    free = {d.id: max(0, d.capacity(req.capacity_basis) - state.occupants(d, moving)) for d in dormitories}

    assignments = []
    placed = 0
    slot = 0
    for record in _preview_order(records, req):
        while slot < len(dormitories) and free[dormitories[slot].id] == 0:
            slot += 1
        if slot >= len(dormitories):
            break
        dormitory = dormitories[slot]
        free[dormitory.id] -= 1
        placed += 1
        assignments.append(PreviewAssignmentDTO(
            record_id=record.id,
            destination_id=dormitory.id,
            destination_name=dormitory.name,
            gbs_number=record.assignment_key,
            univ_group_number=record.department,
            grade_number=record.grade,
            user_name=record.name,
        ))

    return PreviewDTO(
        capacity_basis=req.capacity_basis,
        strategy=req.strategy,
        is_assignable=bool(records) and bool(dormitories) and placed == len(records),
        assignments=assignments,
    )


# ----------------------------
# Routes
# ----------------------------

router = APIRouter()


@router.get("/{slug}/line-up/user-lineups", summary="Current roster")
def user_lineups(slug: str, state: RosterState = Depends(get_state)):
    if state.unavailable:
        raise HTTPException(status_code=503, detail="Roster temporarily unavailable")
    response = RosterResponse(lineups=[RecordDTO.from_record(r) for r in state.snapshot()])
    return response.to_wire()


@router.post("/{slug}/line-up/assign-gbs", summary="Assign or clear a group number")
def assign_gbs(slug: str, req: AssignGroupRequest, state: RosterState = Depends(get_state)):
    record = state.require(req.record_id)
    if record.is_primary and req.gbs_number != record.assignment_key:
        raise HTTPException(status_code=400, detail="A group leader cannot change group")
    record = state.update(record.id, assignment_key=req.gbs_number)
    logger.info(f"Registration {record.id} assigned to group {req.gbs_number}")
    echoed = record.model_copy(update={"group_counts": state.group_counts(record.assignment_key)})
    return RecordDTO.from_record(echoed).to_wire()


@router.post("/{slug}/line-up/{record_id}/lineup-memo", summary="Create a memo")
def create_memo(slug: str, record_id: int, req: NoteRequest, state: RosterState = Depends(get_state)):
    state.require(record_id)
    note_id = str(state.next_note_id)
    state.next_note_id += 1
    state.update(record_id, note=Note(content=req.memo, color_tag=req.color or None, note_id=note_id))
    return {"id": int(note_id), "memo": req.memo, "color": req.color}


@router.put("/{slug}/line-up/{note_id}/lineup-memo", summary="Update a memo")
def update_memo(slug: str, note_id: str, req: NoteRequest, state: RosterState = Depends(get_state)):
    record = state.find_note(note_id)
    state.update(record.id, note=Note(content=req.memo, color_tag=req.color or None, note_id=note_id))
    return {"id": int(note_id), "memo": req.memo, "color": req.color}


@router.delete("/{slug}/line-up/{note_id}/lineup-memo", summary="Delete a memo")
def delete_memo(slug: str, note_id: str, state: RosterState = Depends(get_state)):
    record = state.find_note(note_id)
    state.update(record.id, note=Note())
    return {"deleted": True}


@router.post("/{slug}/dormitory/preview-assign-dormitory", summary="Preview a dormitory assignment")
def preview_assign(slug: str, req: PreviewRequest, state: RosterState = Depends(get_state)):
    preview = plan_preview(state, req)
    return {"preview": preview.to_wire()}


@router.post("/{slug}/dormitory/bulk-assign-dormitory", summary="Apply a dormitory assignment")
def bulk_assign(slug: str, req: BulkAssignRequest, state: RosterState = Depends(get_state)):
    if not req.assignments:
        raise HTTPException(status_code=400, detail="Nothing to assign")
    # validate everything first so a bad item leaves the roster untouched
    resolved = []
    for item in req.assignments:
        state.require(item.record_id)
        dormitory = state.dormitories.get(item.destination_id)
        if dormitory is None:
            raise HTTPException(status_code=404, detail=f"Dormitory {item.destination_id} not found")
        resolved.append((item.record_id, dormitory))

    for record_id, dormitory in resolved:
        state.update(record_id, destination=dormitory.name)
    logger.info(f"Bulk assigned {len(resolved)} registrations")
    return {"assigned": len(resolved)}


def create_app(state: Optional[RosterState] = None) -> FastAPI:
    app = FastAPI(title="Lineup simulation server")
    app.state.roster = state or RosterState()
    app.include_router(router, prefix="/api/v1/retreat", tags=["lineup"])
    return app
