# lineup/services/bulk_assignment.py
import logging
from typing import Callable, FrozenSet, Iterable, Optional

from lineup.adapters.lineup_api import LineupApi
from lineup.domain.errors import ApiError, BulkCommitFailure, BulkCommitRefused, BulkPreviewFailure
from lineup.domain.models import AssignmentPreview, AssignmentStrategy, CapacityBasis

logger = logging.getLogger(__name__)


class BulkAssignmentCoordinator:
    """
    Two-phase destination assignment.

    preview() asks the server for a proposed mapping without side effects;
    commit() sends back exactly that mapping as one batch. Any change to the
    selection throws the preview away.
    """

    def __init__(self, api: LineupApi, on_committed: Optional[Callable[[], None]] = None):
        self.api = api
        self.on_committed = on_committed

        self.record_ids: FrozenSet[int] = frozenset()
        self.destination_ids: FrozenSet[int] = frozenset()
        self.strategy = AssignmentStrategy.SAME_GBS_SAME_DORMITORY
        self.capacity_basis = CapacityBasis.OPTIMAL

        self.preview: Optional[AssignmentPreview] = None
        self.error: Optional[str] = None

    def select(
        self,
        record_ids: Optional[Iterable[int]] = None,
        destination_ids: Optional[Iterable[int]] = None,
        strategy: Optional[AssignmentStrategy] = None,
        capacity_basis: Optional[CapacityBasis] = None,
    ) -> None:
        selection = (
            frozenset(record_ids) if record_ids is not None else self.record_ids,
            frozenset(destination_ids) if destination_ids is not None else self.destination_ids,
            strategy or self.strategy,
            capacity_basis or self.capacity_basis,
        )
        if selection != (self.record_ids, self.destination_ids, self.strategy, self.capacity_basis):
            self.preview = None
            self.error = None
        self.record_ids, self.destination_ids, self.strategy, self.capacity_basis = selection

    @property
    def can_commit(self) -> bool:
        return self.preview is not None and self.preview.is_assignable

    async def request_preview(self) -> AssignmentPreview:
        self.error = None
        if not self.record_ids or not self.destination_ids:
            self.preview = AssignmentPreview(
                strategy=self.strategy,
                capacity_basis=self.capacity_basis,
                is_assignable=False,
            )
            return self.preview

        try:
            preview = await self.api.preview_bulk_assignment(
                self.record_ids, self.destination_ids, self.strategy, self.capacity_basis
            )
        except ApiError as e:
            self.preview = None
            self.error = e.message
            raise BulkPreviewFailure(e.message) from e

        self.preview = preview
        logger.info(
            f"Preview for {len(self.record_ids)} records over {len(self.destination_ids)} destinations: "
            f"assignable={preview.is_assignable}"
        )
        return preview

    async def commit(self) -> None:
        if self.preview is None:
            raise BulkCommitRefused("Preview the assignment before committing")
        if not self.preview.is_assignable:
            raise BulkCommitRefused("The previewed assignment cannot be applied")

        try:
            await self.api.commit_bulk_assignment(self.preview.mapping())
        except ApiError as e:
            self.error = e.message
            raise BulkCommitFailure(e.message) from e

        self.preview = None
        self.error = None
        if self.on_committed is not None:
            self.on_committed()
