# lineup/services/edit_sessions.py
import logging
from typing import Dict, List, Optional, Tuple

from lineup.domain.errors import ConflictDetected
from lineup.infrastructure.record_store import RecordStore
from lineup.services.edit_session import FieldEditSession
from lineup.services.fields import get_field

logger = logging.getLogger(__name__)

SessionKey = Tuple[int, str]


class EditSessionRegistry:
    """Open edit sessions, at most one per (record, field)."""

    def __init__(self, store: RecordStore, writer, debounce_seconds: Optional[float] = None, scheduler=None):
        self.store = store
        self.writer = writer
        self.debounce_seconds = debounce_seconds
        self.scheduler = scheduler
        self._sessions: Dict[SessionKey, FieldEditSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, record_id: int, field_name: str) -> FieldEditSession:
        key = (record_id, field_name)
        session = self._sessions.get(key)
        if session is not None and not session.disposed:
            return session

        record = self.store.require(record_id)
        session = FieldEditSession(
            record,
            get_field(field_name),
            self.writer,
            debounce_seconds=self.debounce_seconds,
            scheduler=self.scheduler,
            on_close=self._forget,
        )
        session.begin()
        self._sessions[key] = session
        return session

    def get(self, record_id: int, field_name: str) -> Optional[FieldEditSession]:
        return self._sessions.get((record_id, field_name))

    def sessions(self) -> List[FieldEditSession]:
        return list(self._sessions.values())

    def close(self, record_id: int, field_name: str) -> None:
        session = self._sessions.get((record_id, field_name))
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for session in self.sessions():
            session.close()

    def _forget(self, session: FieldEditSession) -> None:
        key = (session.record_id, session.field_name)
        if self._sessions.get(key) is session:
            del self._sessions[key]

    def reconcile(self, store: Optional[RecordStore] = None) -> List[ConflictDetected]:
        """Merge a freshly replaced snapshot into every open session."""
        store = store or self.store
        conflicts = []
        for session in self.sessions():
            record = store.get(session.record_id)
            if record is None:
                logger.info(f"Record {session.record_id} left the roster; closing its {session.field_name} editor")
                session.close()
                continue
            conflict = session.apply_remote(session.field.read(record), record.note.note_id)
            if conflict is not None:
                logger.info(f"Conflict on record {conflict.record_id} field {conflict.field}")
                conflicts.append(conflict)
        return conflicts
