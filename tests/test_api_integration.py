# tests/test_api_integration.py
"""
End-to-end tests against the in-memory lineup server.

LineupApi and LineupController talk to the FastAPI app through
httpx.ASGITransport; the raw wire shapes are checked with TestClient.
"""
import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from lineup.adapters.lineup_api import LineupApi
from lineup.domain.errors import ApiError, TransientSyncFailure
from lineup.domain.models import AssignmentStrategy, CapacityBasis, Gender, NoteValue
from lineup.infrastructure.record_store import RecordStore
from lineup.services.assignment_writer import AssignmentWriter
from lineup.services.edit_session import EditStatus, SaveOutcome
from lineup.services.edit_sessions import EditSessionRegistry
from lineup.services.fields import NOTE_FIELD
from lineup.services.lineup_controller import LineupController
from lineup.services.sync_scheduler import SyncScheduler
from lineup.simulation.server import Dormitory, RosterState, create_app

from helpers import ManualScheduler, make_record

BASE_URL = "http://lineup.test"
SLUG = "spring-retreat"


@pytest.fixture
def state():
    state = RosterState()
    state.add_record(make_record(1, name="Kim", assignment_key=3, is_primary=True, grade=3, gender=Gender.FEMALE))
    state.add_record(make_record(2, name="Lee", assignment_key=3, grade=2, is_full_attendance=True))
    state.add_record(make_record(3, name="Park", grade=1, schedule_ids=frozenset({1, 2})))
    state.add_record(make_record(4, name="Choi", grade=4))
    state.add_dormitory(Dormitory(id=10, name="Room 101", optimal_capacity=1, max_capacity=2))
    state.add_dormitory(Dormitory(id=11, name="Room 102", optimal_capacity=1))
    return state


@pytest.fixture
def app(state):
    return create_app(state)


@pytest.fixture
async def api(app):
    api = LineupApi.create(BASE_URL, SLUG, transport=httpx.ASGITransport(app=app))
    yield api
    await api.aclose()


def controller_for(app) -> LineupController:
    return LineupController.create(
        BASE_URL, SLUG, transport=httpx.ASGITransport(app=app), scheduler=ManualScheduler()
    )


# -------------------------------
# Wire shapes
# -------------------------------

def test_roster_wire_shape(app):
    client = TestClient(app)
    resp = client.get(f"/api/v1/retreat/{SLUG}/line-up/user-lineups")
    assert resp.status_code == 200
    rows = resp.json()["userRetreatGbsLineups"]
    kim = rows[0]
    assert kim["name"] == "Kim"
    assert kim["gbsNumber"] == 3
    assert kim["isLeader"] is True
    # group aggregates are copied onto every member
    assert (kim["maleCount"], kim["femaleCount"], kim["fullAttendanceCount"]) == (1, 1, 1)
    assert rows[1]["maleCount"] == 1


def test_unknown_record_is_404(app):
    client = TestClient(app)
    resp = client.post(
        f"/api/v1/retreat/{SLUG}/line-up/assign-gbs",
        json={"userRetreatRegistrationId": 99, "gbsNumber": 1},
    )
    assert resp.status_code == 404


# -------------------------------
# Transport
# -------------------------------

async def test_fetch_roster(api):
    records = await api.fetch_roster()
    assert [r.name for r in records] == ["Kim", "Lee", "Park", "Choi"]
    assert records[2].schedule_ids == frozenset({1, 2})


async def test_note_lifecycle(api, state):
    note_id = await api.create_note(3, NoteValue(content=" needs a ride ", color_tag="yellow"))
    assert state.records[3].note.content == "needs a ride"

    await api.update_note(note_id, NoteValue(content="has a ride"))
    (park,) = [r for r in await api.fetch_roster() if r.id == 3]
    assert park.note.content == "has a ride"
    assert park.note.note_id == note_id

    await api.delete_note(note_id)
    assert state.records[3].note.note_id is None


async def test_server_message_becomes_api_error(api):
    with pytest.raises(ApiError) as exc:
        await api.assign_group(1, 5)
    assert exc.value.status_code == 400
    assert exc.value.message == "A group leader cannot change group"


async def test_assign_echoes_record(api):
    echoed = await api.assign_group(3, 3)
    assert echoed.assignment_key == 3
    assert echoed.group_counts.male + echoed.group_counts.female == 3


async def test_preview_is_deterministic_for_random(api):
    args = ([2, 3, 4], [10, 11], AssignmentStrategy.RANDOM, CapacityBasis.MAX)
    first = await api.preview_bulk_assignment(*args)
    second = await api.preview_bulk_assignment(*args)
    assert first.mapping() == second.mapping()
    assert first.is_assignable is True


async def test_preview_respects_capacity_basis(api):
    preview = await api.preview_bulk_assignment([2, 3, 4], [10, 11], AssignmentStrategy.SAME_GBS_SAME_DORMITORY,
                                                CapacityBasis.OPTIMAL)
    assert preview.is_assignable is False
    assert len(preview.assignments) == 2


async def test_bulk_commit_is_atomic(api, state):
    with pytest.raises(ApiError):
        await api.commit_bulk_assignment({2: 10, 3: 99})
    assert state.records[2].destination is None

    await api.commit_bulk_assignment({2: 10, 3: 11})
    assert state.records[2].destination == "Room 101"
    assert state.records[3].destination == "Room 102"


async def test_unavailable_server_is_api_error(api, state):
    state.unavailable = True
    with pytest.raises(ApiError) as exc:
        await api.fetch_roster()
    assert exc.value.status_code == 503


# -------------------------------
# Controller
# -------------------------------

async def test_two_operators_see_a_conflict(app):
    alice = controller_for(app)
    bob = controller_for(app)
    await alice.start(background=False)
    await bob.start(background=False)
    try:
        alice.change(4, NOTE_FIELD, "vegetarian")
        bob.change(4, NOTE_FIELD, "allergic to nuts")
        await bob.save(4)

        await alice.sync.refresh()
        session = alice.session(4, NOTE_FIELD)
        assert session.status == EditStatus.CONFLICT_PENDING
        assert session.pending_remote_value == NoteValue(content="allergic to nuts")

        session.keep_editing()
        await alice.save(4)
        await bob.sync.refresh()
        assert bob.store.require(4).note.content == "vegetarian"
    finally:
        await alice.stop()
        await bob.stop()


async def test_controller_assign_and_bulk_flow(app, state):
    controller = controller_for(app)
    await controller.start(background=False)
    try:
        session = await controller.assign(4, "3")
        assert session.error is None
        assert controller.groups()[0].size == 3

        leader = await controller.assign(1, "7")
        assert leader.error == "A group leader cannot be moved to another group"
        assert controller.store.require(1).assignment_key == 3

        preview = await controller.preview_bulk([3], [11])
        assert preview.is_assignable
        assert await controller.commit_bulk() is True
        await controller.sync.refresh()
        assert controller.store.require(3).destination == "Room 102"
        rooms = controller.destination_groups()
        assert rooms[0].destination == "Room 102"
    finally:
        await controller.stop()


async def test_stale_indicator(app, state):
    controller = controller_for(app)
    await controller.start(background=False)
    try:
        state.unavailable = True
        for _ in range(3):
            await controller.sync.refresh()
        assert controller.is_stale
        # last good snapshot is still shown
        assert len(controller.store) == 4

        state.unavailable = False
        await controller.sync.refresh()
        assert not controller.is_stale
    finally:
        await controller.stop()


# -------------------------------
# Malformed 2xx responses
# -------------------------------

def answering(body: bytes, content_type: str = "text/html") -> LineupApi:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": content_type})
    return LineupApi.create(BASE_URL, SLUG, transport=httpx.MockTransport(handler))


def syncing(api: LineupApi, **kwargs):
    store = RecordStore([make_record(1)])
    registry = EditSessionRegistry(store, AssignmentWriter(api, store), scheduler=ManualScheduler())
    return store, registry, SyncScheduler(api, store, registry, stale_after=3, **kwargs)


async def test_html_roster_is_a_failed_poll():
    api = answering(b"<html>maintenance</html>")
    store, _, sync = syncing(api)
    try:
        assert await sync.refresh() is False
        assert sync.consecutive_failures == 1
        assert isinstance(sync.last_failure, TransientSyncFailure)
        assert len(store) == 1
    finally:
        await api.aclose()


async def test_roster_without_lineups_keeps_store_and_edits():
    api = answering(b'{"message": "ok"}', "application/json")
    store, registry, sync = syncing(api)
    session = registry.open(1, NOTE_FIELD)
    session.change("half typed")
    try:
        assert await sync.refresh() is False
        assert len(store) == 1
        assert not session.disposed
        assert session.local_value == NoteValue(content="half typed")
    finally:
        await api.aclose()


async def test_background_sync_survives_malformed_roster():
    api = answering(b"<html>maintenance</html>")
    _, _, sync = syncing(api, interval=60)
    sync.start()
    for _ in range(100):
        if sync.consecutive_failures:
            break
        await asyncio.sleep(0.01)
    assert sync.running
    assert sync.consecutive_failures == 1
    await sync.stop()
    await api.aclose()


async def test_malformed_write_response_fails_the_save():
    api = answering(b"<html>maintenance</html>")
    _, registry, _ = syncing(api)
    session = registry.open(1, NOTE_FIELD)
    session.change("hello")
    try:
        assert await session.save() == SaveOutcome.FAILED
        assert session.status == EditStatus.EDITING
        assert session.error.startswith("Malformed response")
    finally:
        await api.aclose()


async def test_malformed_preview_is_api_error():
    api = answering(b'{"preview": {"isAssignable": true}}', "application/json")
    try:
        with pytest.raises(ApiError) as exc:
            await api.preview_bulk_assignment([1], [2], AssignmentStrategy.RANDOM, CapacityBasis.MAX)
        assert exc.value.status_code == 200
    finally:
        await api.aclose()
