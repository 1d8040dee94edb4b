# lineup/simulation/simulate.py
"""
Simulation script: seeds a roster with fake registrations, then lets two
operators edit it through their own controllers against the same in-memory
server.

Operator A edits a note while operator B saves a different note on the same
record, so A's next poll reports a conflict. Talks HTTP through
httpx.ASGITransport; no network is needed.
"""
import asyncio
import logging
import random
from typing import Optional

import httpx
from faker import Faker

from lineup.domain.models import Gender, Record
from lineup.services.lineup_controller import LineupController
from lineup.services.fields import NOTE_FIELD
from lineup.simulation.server import Dormitory, RosterState, create_app

logger = logging.getLogger(__name__)

NUM_RECORDS = 40
GROUP_SIZE = 6
DEPARTMENTS = 4
SCHEDULE_IDS = (1, 2, 3)


def build_state(num_records: int = NUM_RECORDS, seed: Optional[int] = None) -> RosterState:
    """Roster with every GROUP_SIZE-th record leading a group and a few left unassigned."""
    fake = Faker("ko_KR")
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)

    state = RosterState()
    for i in range(1, num_records + 1):
        unassigned = i > num_records - num_records // 5
        key = None if unassigned else (i - 1) // GROUP_SIZE + 1
        schedules = frozenset(s for s in SCHEDULE_IDS if rng.random() < 0.85) or frozenset(SCHEDULE_IDS[:1])
        state.add_record(Record(
            id=i,
            name=fake.name(),
            assignment_key=key,
            is_primary=key is not None and (i - 1) % GROUP_SIZE == 0,
            department=rng.randint(1, DEPARTMENTS),
            gender=rng.choice([Gender.MALE, Gender.FEMALE]),
            grade=rng.randint(1, 4),
            record_type=rng.choice([None, "SOLDIER", "NEW_COMER"]),
            schedule_ids=schedules,
            phone_number=fake.phone_number(),
            is_full_attendance=len(schedules) == len(SCHEDULE_IDS),
        ))

    for n in range(1, 5):
        state.add_dormitory(Dormitory(id=n, name=f"Room {100 + n}", optimal_capacity=8, max_capacity=10))
    return state


async def run_simulation(state: Optional[RosterState] = None) -> dict:
    state = state or build_state(seed=7)
    app = create_app(state)
    base_url = "http://lineup.test"

    alice = LineupController.create(base_url, transport=httpx.ASGITransport(app=app), debounce_seconds=30)
    bob = LineupController.create(base_url, transport=httpx.ASGITransport(app=app), debounce_seconds=30)
    try:
        await alice.start(background=False)
        await bob.start(background=False)
        target = alice.groups()[0].members[0].id
        logger.info(f"Both operators loaded {len(alice.store)} records; editing record {target}")

        alice.change(target, NOTE_FIELD, "Bring extra blankets")
        bob.change(target, NOTE_FIELD, "Needs ground floor room")
        await bob.save(target, NOTE_FIELD)

        await alice.sync.refresh()
        session = alice.session(target, NOTE_FIELD)
        conflict = session.conflict if session else None
        if conflict is not None:
            logger.info(f"Operator A sees a conflict: {conflict.message}")
            session.accept_remote()
            session.cancel()

        leaderless = [r for r in alice.store if not r.is_primary and r.assignment_key is not None]
        moved = leaderless[0]
        group_key = alice.groups()[1].key
        session = await alice.assign(moved.id, group_key)
        if session.warning:
            logger.info(session.warning)

        unassigned = [r.id for r in alice.store if r.destination is None][:12]
        preview = await alice.preview_bulk(unassigned, list(state.dormitories))
        committed = bool(preview and preview.is_assignable) and await alice.commit_bulk()
        await alice.sync.refresh()

        stats = alice.stats()
        logger.info(f"Roster: {stats.total} records, {stats.assigned} assigned, {stats.unassigned} unassigned")
        return {
            "conflict": conflict,
            "assign_status": session.status,
            "assign_warning": session.warning,
            "committed": committed,
            "stats": stats,
        }
    finally:
        await alice.stop()
        await bob.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_simulation())
