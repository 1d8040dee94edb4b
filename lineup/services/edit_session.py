# lineup/services/edit_session.py
"""
Edit state machine for one field of one record.

    Idle -> Editing -> Saving -> Idle            (save accepted)
                             -> Editing          (save rejected, error attached)
    Editing -> ConflictPending                   (poll brought someone else's value)
    ConflictPending -> Editing                   (keep editing, remote value kept)
    ConflictPending -> Idle                      (accept remote)

Local changes restart a debounce timer; when it expires the value is saved if
it is worth sending. The timer belongs to the session and never fires after the
session is disposed.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from lineup.config.settings import settings
from lineup.domain.errors import ConflictDetected, SaveFailure
from lineup.domain.models import NoteValue, Record
from lineup.services.fields import EditableField

logger = logging.getLogger(__name__)

_UNSET = object()


class EditStatus(str, Enum):
    IDLE = "IDLE"
    EDITING = "EDITING"
    SAVING = "SAVING"
    CONFLICT_PENDING = "CONFLICT_PENDING"


class SaveOutcome(str, Enum):
    SAVED = "SAVED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    BUSY = "BUSY"


class DebounceTimer:
    """
    Cancellable quiet-period timer.

    `scheduler` is anything with an event loop's call_later(delay, callback)
    signature; the running loop is used when none is given.
    """

    def __init__(self, delay: float, callback: Callable[[], None], scheduler=None):
        self.delay = delay
        self.callback = callback
        self.scheduler = scheduler
        self._handle = None
        self._disposed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def restart(self) -> None:
        if self._disposed:
            return
        self.cancel()
        scheduler = self.scheduler or asyncio.get_running_loop()
        self._handle = scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def dispose(self) -> None:
        self.cancel()
        self._disposed = True

    def _fire(self) -> None:
        self._handle = None
        if self._disposed:
            return
        self.callback()


class FieldEditSession:
    def __init__(
        self,
        record: Record,
        field: EditableField,
        writer,
        debounce_seconds: Optional[float] = None,
        scheduler=None,
        on_close: Optional[Callable[["FieldEditSession"], None]] = None,
    ):
        self.record_id = record.id
        self.field = field
        self.writer = writer
        self.on_close = on_close

        self.status = EditStatus.IDLE
        self.baseline_value = field.read(record)
        self.baseline_note_id = record.note.note_id
        self.local_value = self.baseline_value
        self._pending_remote = _UNSET
        self._pending_note_id: Optional[str] = None

        self.error: Optional[str] = None
        self.warning: Optional[str] = None
        self.conflict: Optional[ConflictDetected] = None
        self.last_outcome: Optional[SaveOutcome] = None

        self.disposed = False
        self._saving = False
        self._save_task: Optional[asyncio.Task] = None
        delay = settings.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._timer = DebounceTimer(delay, self._on_quiet_period, scheduler)

    def __repr__(self) -> str:
        return f"<FieldEditSession {self.record_id}/{self.field_name} {self.status.value}>"

    @property
    def field_name(self) -> str:
        return self.field.name

    @property
    def has_pending_remote(self) -> bool:
        return self._pending_remote is not _UNSET

    @property
    def pending_remote_value(self) -> Any:
        return None if self._pending_remote is _UNSET else self._pending_remote

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def autosave_pending(self) -> bool:
        return self._timer.pending

    # ------------------------
    # Operator actions
    # ------------------------

    def begin(self) -> None:
        if self.status == EditStatus.IDLE:
            self.local_value = self.baseline_value
            self.status = EditStatus.EDITING

    def change(self, raw: Any) -> None:
        if self.disposed:
            raise RuntimeError(f"{self!r} is closed")
        try:
            value = self.field.coerce(raw, self.local_value)
        except ValueError as e:
            self._timer.cancel()
            self.error = str(e)
            self.local_value = self.baseline_value
            return

        self.local_value = value
        self.error = None
        if self.status == EditStatus.IDLE:
            self.status = EditStatus.EDITING
        self._timer.restart()

    async def save(self) -> SaveOutcome:
        """Save now, skipping the remaining quiet period."""
        self._timer.cancel()
        return await self._save()

    def keep_editing(self) -> None:
        if self.status == EditStatus.CONFLICT_PENDING:
            self.status = EditStatus.EDITING
            self.conflict = None
            if self._pending_note_id:
                # the next save overwrites the note the other operator created
                self.baseline_note_id = self._pending_note_id

    def accept_remote(self) -> None:
        if not self.has_pending_remote:
            return
        self._timer.cancel()
        self.status = EditStatus.IDLE
        self._set_baseline(self._pending_remote, self._pending_note_id)
        self.local_value = self.baseline_value
        self.error = None

    def cancel(self) -> None:
        """
        Close the editor. A remote value buffered while editing wins over the
        pre-edit value; an in-flight save is not cancelled.
        """
        self._timer.cancel()
        self.status = EditStatus.IDLE
        if self.has_pending_remote:
            self._set_baseline(self._pending_remote, self._pending_note_id)
        self.local_value = self.baseline_value
        self.error = None
        self.close()

    async def delete(self) -> SaveOutcome:
        if not self.field.supports_delete:
            raise ValueError(f"Field {self.field_name} cannot be deleted")
        if self._saving:
            return self._finish(SaveOutcome.BUSY)
        if not self.baseline_note_id:
            self.error = "There is no saved note to delete"
            return self._finish(SaveOutcome.FAILED)

        self._timer.cancel()
        self._saving = True
        self.status = EditStatus.SAVING
        try:
            await self.writer.delete_note(self.record_id, self.baseline_note_id)
        except SaveFailure as e:
            logger.warning(f"Deleting note on record {self.record_id} failed: {e.message}")
            self.error = e.message
            self.status = EditStatus.EDITING
            return self._finish(SaveOutcome.FAILED)
        finally:
            self._saving = False

        self.status = EditStatus.IDLE
        self._set_baseline(NoteValue(), None)
        self.local_value = self.baseline_value
        self.error = None
        self.close()
        return self._finish(SaveOutcome.SAVED)

    # ------------------------
    # Sync merge
    # ------------------------

    def apply_remote(self, candidate: Any, note_id: Optional[str] = None) -> Optional[ConflictDetected]:
        """Merge the value a poll brought back for this field."""
        if self.status == EditStatus.IDLE and not self._saving:
            self._set_baseline(candidate, note_id)
            self.local_value = candidate
            return None

        same = self.field.same
        if same(candidate, self.local_value):
            # our own write landed
            self._timer.cancel()
            self.status = EditStatus.IDLE
            self._set_baseline(candidate, note_id)
            self.conflict = None
            return None

        if same(candidate, self.baseline_value):
            return None

        if (self.status == EditStatus.EDITING and self.has_pending_remote
                and same(candidate, self._pending_remote)):
            # already acknowledged with keep editing
            return None

        self._pending_remote = candidate
        self._pending_note_id = note_id
        self.status = EditStatus.CONFLICT_PENDING
        self.conflict = ConflictDetected(
            record_id=self.record_id,
            field=self.field_name,
            local_value=self.local_value,
            remote_value=candidate,
        )
        return self.conflict

    # ------------------------
    # Lifecycle
    # ------------------------

    def dispose(self) -> None:
        self._timer.dispose()
        self.disposed = True

    def close(self) -> None:
        if self.disposed:
            return
        self.dispose()
        if self.on_close is not None:
            self.on_close(self)

    async def drain(self) -> None:
        """Wait for a save started by the debounce timer to resolve."""
        task = self._save_task
        if task is not None:
            await task

    # ------------------------
    # Internals
    # ------------------------

    def _set_baseline(self, value: Any, note_id: Optional[str]) -> None:
        self.baseline_value = value
        self.baseline_note_id = note_id
        self._pending_remote = _UNSET
        self._pending_note_id = None

    def _finish(self, outcome: SaveOutcome) -> SaveOutcome:
        self.last_outcome = outcome
        return outcome

    def _on_quiet_period(self) -> None:
        if self.disposed:
            return
        self._save_task = asyncio.ensure_future(self._save())

    async def _save(self) -> SaveOutcome:
        if self._saving:
            return self._finish(SaveOutcome.BUSY)
        value = self.local_value
        if not self.field.is_sendable(value, self.baseline_value):
            return self._finish(SaveOutcome.SKIPPED)

        self._saving = True
        self.status = EditStatus.SAVING
        try:
            result = await self.field.persist(self.writer, self.record_id, value, self.baseline_note_id)
        except SaveFailure as e:
            logger.warning(f"Saving {self.field_name} on record {self.record_id} failed: {e.message}")
            self.error = e.message
            if self.status != EditStatus.CONFLICT_PENDING:
                self.status = EditStatus.EDITING
            return self._finish(SaveOutcome.FAILED)
        finally:
            self._saving = False

        self.status = EditStatus.IDLE
        self._set_baseline(value, result.note_id if result.note_id else self.baseline_note_id)
        self.error = None
        self.conflict = None
        self.warning = result.warning

        if not self.field.same(self.local_value, value) and not self.disposed:
            # typed while the request was out
            self.status = EditStatus.EDITING
            self._timer.restart()
        else:
            self.local_value = value
            self.close()
        return self._finish(SaveOutcome.SAVED)
