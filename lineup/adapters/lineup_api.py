# lineup/adapters/lineup_api.py
"""
Async HTTP adapter for the lineup server.

Wraps an httpx.AsyncClient and speaks the server's request/response shapes:
- fetch_roster
- create_note / update_note / delete_note
- assign_group
- preview_bulk_assignment / commit_bulk_assignment

Every failure (non-2xx status or transport error) is raised as ApiError with
the server's message when one is available.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

from lineup.adapters.schemas import (
    AssignGroupRequest,
    BulkAssignItem,
    BulkAssignRequest,
    NoteRequest,
    NoteResponse,
    PreviewRequest,
    PreviewResponse,
    RecordDTO,
    RosterResponse,
)
from lineup.config.settings import settings
from lineup.domain.errors import ApiError
from lineup.domain.models import (
    AssignmentPreview,
    AssignmentStrategy,
    CapacityBasis,
    NoteValue,
    Record,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if message:
            return str(message)
    return f"Request failed with status {response.status_code}"


def _decode(response: httpx.Response, model: Optional[Type[BaseModel]] = None) -> Any:
    """Parse a 2xx body; an unreadable or unexpected body is an ApiError like any other failure."""
    try:
        data = response.json()
        return model.model_validate(data) if model is not None else data
    except (ValueError, ValidationError) as e:
        request = response.request
        raise ApiError(
            f"Malformed response from {request.method} {request.url.path}: {e}",
            status_code=response.status_code,
        ) from e


class LineupApi:
    def __init__(self, client: httpx.AsyncClient, retreat_slug: Optional[str] = None):
        self.client = client
        self.retreat_slug = retreat_slug or settings.RETREAT_SLUG

    @classmethod
    def create(
        cls,
        base_url: Optional[str] = None,
        retreat_slug: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LineupApi":
        client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )
        return cls(client, retreat_slug)

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def _lineup_path(self) -> str:
        return f"/api/v1/retreat/{self.retreat_slug}/line-up"

    @property
    def _dormitory_path(self) -> str:
        return f"/api/v1/retreat/{self.retreat_slug}/dormitory"

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e
        if response.is_error:
            raise ApiError(_error_message(response), status_code=response.status_code)
        return response

    # ------------------------
    # Canonical fetch
    # ------------------------

    async def fetch_roster(self) -> List[Record]:
        response = await self._request("GET", f"{self._lineup_path}/user-lineups")
        roster = _decode(response, RosterResponse)
        return [dto.to_record() for dto in roster.lineups]

    # ------------------------
    # Notes
    # ------------------------

    async def create_note(self, record_id: int, value: NoteValue) -> str:
        """Create a note on a record and return the new note id."""
        value = value.normalized()
        body = NoteRequest(memo=value.content, color=value.color_tag)
        response = await self._request("POST", f"{self._lineup_path}/{record_id}/lineup-memo", body.to_wire())
        return str(_decode(response, NoteResponse).id)

    async def update_note(self, note_id: str, value: NoteValue) -> None:
        value = value.normalized()
        body = NoteRequest(memo=value.content, color=value.color_tag)
        await self._request("PUT", f"{self._lineup_path}/{note_id}/lineup-memo", body.to_wire())

    async def delete_note(self, note_id: str) -> None:
        await self._request("DELETE", f"{self._lineup_path}/{note_id}/lineup-memo")

    # ------------------------
    # Group key
    # ------------------------

    async def assign_group(self, record_id: int, assignment_key: Optional[int]) -> Optional[Record]:
        """Assign (or clear) a record's group key. Returns the server's record when it echoes one."""
        body = AssignGroupRequest(record_id=record_id, gbs_number=assignment_key)
        response = await self._request("POST", f"{self._lineup_path}/assign-gbs", body.to_wire())
        if not response.content:
            return None
        data = _decode(response)
        if isinstance(data, dict) and "id" in data and "name" in data:
            return _decode(response, RecordDTO).to_record()
        return None

    # ------------------------
    # Bulk assignment
    # ------------------------

    async def preview_bulk_assignment(
        self,
        record_ids: Iterable[int],
        destination_ids: Iterable[int],
        strategy: AssignmentStrategy,
        capacity_basis: CapacityBasis,
    ) -> AssignmentPreview:
        body = PreviewRequest(
            record_ids=sorted(record_ids),
            destination_ids=sorted(destination_ids),
            strategy=strategy,
            capacity_basis=capacity_basis,
        )
        response = await self._request("POST", f"{self._dormitory_path}/preview-assign-dormitory", body.to_wire())
        return _decode(response, PreviewResponse).preview.to_preview()

    async def commit_bulk_assignment(self, mapping: Dict[int, int]) -> None:
        body = BulkAssignRequest(
            assignments=[BulkAssignItem(record_id=rid, destination_id=did) for rid, did in mapping.items()]
        )
        await self._request("POST", f"{self._dormitory_path}/bulk-assign-dormitory", body.to_wire())
        logger.info(f"Committed bulk assignment of {len(mapping)} records")
