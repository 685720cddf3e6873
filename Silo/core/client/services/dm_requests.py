"""
Pending direct-message requests.
"""
from typing import Dict, List, Optional

from Silo.core.logging import get_logger

from ..interfaces import Backend
from ..models.data import DMRequest
from ..utils.constants import DM_REQUEST_ACTIONS
from ..utils.exceptions import ValidationError

logger = get_logger(__name__)


class DMRequestInbox:
    """Requests the viewer sent or received that are still pending."""

    def __init__(self, backend: Backend, viewer_id: str):
        self._backend = backend
        self.viewer_id = viewer_id
        self._requests: Dict[str, DMRequest] = {}

    @property
    def requests(self) -> List[DMRequest]:
        return sorted(self._requests.values(), key=lambda r: r.created_at, reverse=True)

    @property
    def incoming(self) -> List[DMRequest]:
        return [r for r in self.requests if r.requested_id == self.viewer_id]

    @property
    def outgoing(self) -> List[DMRequest]:
        return [r for r in self.requests if r.requester_id == self.viewer_id]

    async def load(self) -> List[DMRequest]:
        rows = await self._backend.list_dm_requests(self.viewer_id)
        self._requests = {r.id: r for r in rows if r.status == "pending"}
        return self.requests

    def _check(self, request_id: str, action: str) -> DMRequest:
        if action not in DM_REQUEST_ACTIONS:
            raise ValidationError("Unknown request action", {"action": action})
        request = self._requests.get(request_id)
        if request is None:
            raise ValidationError("Unknown request", {"id": request_id})
        own = request.requester_id == self.viewer_id
        if own != (action == "cancel"):
            raise ValidationError(
                "Only the requester can cancel; only the recipient can accept or decline",
                {"action": action},
            )
        return request

    async def respond(self, request_id: str, action: str) -> Optional[str]:
        """
        Accept, decline or cancel one request.

        Returns:
            The conversation id when an accept opened one, otherwise None

        Raises:
            ValidationError: unknown request or an action the viewer can't take
            BackendError: the backend refused; the inbox is unchanged
        """
        self._check(request_id, action)
        conversation_id = await self._backend.respond_dm_request(request_id, action)
        logger.info("DM request %s: %s", request_id, action)
        if conversation_id:
            self._requests.pop(request_id, None)
        else:
            await self.load()
        return conversation_id

    async def accept(self, request_id: str) -> Optional[str]:
        return await self.respond(request_id, "accept")

    async def decline(self, request_id: str) -> None:
        await self.respond(request_id, "decline")

    async def cancel(self, request_id: str) -> None:
        await self.respond(request_id, "cancel")


__all__ = ['DMRequestInbox']
