"""Per-person request limit: live requests per (letter, requester identity).

A request is live unless it was cancelled or rejected. The check is only
race-free when the caller holds the repository's submission lock for the
same pair (see engine.PhysicalLetterWorkflow.submit_request).
"""

from __future__ import annotations

import logging

from src.schemas.requests import LetterSnapshot, RequestLimitStatus
from src.storage.repository import RequestRepository
from src.workflow.errors import RateLimitExceeded
from src.workflow.identity import RequesterIdentity

logger = logging.getLogger(__name__)


class RequestLimiter:
    """Counts live requests against the letter's ``max_requests_per_person``."""

    def __init__(self, repository: RequestRepository) -> None:
        self._repository = repository

    async def current_count(self, letter: LetterSnapshot, identity: RequesterIdentity) -> int:
        return await self._repository.count_live(letter.id, identity.kind, identity.key)

    async def check(self, letter: LetterSnapshot, identity: RequesterIdentity, requested: int = 1) -> int:
        """Raise RateLimitExceeded if ``requested`` more live requests would exceed the limit.

        Returns the current live count.
        """
        limit = letter.settings.max_requests_per_person
        current = await self.current_count(letter, identity)
        if current + requested > limit:
            logger.info(
                "Request limit hit: letter=%s requester=%s current=%d requested=%d limit=%d",
                letter.id,
                identity.kind.value,
                current,
                requested,
                limit,
            )
            raise RateLimitExceeded(limit=limit, current=current, requested=requested)
        return current

    async def status(self, letter: LetterSnapshot, identity: RequesterIdentity) -> RequestLimitStatus:
        limit = letter.settings.max_requests_per_person
        current = await self.current_count(letter, identity)
        remaining = max(0, limit - current)
        return RequestLimitStatus(
            can_request=letter.settings.allow_physical_requests and remaining > 0,
            remaining_requests=remaining,
            max_requests_per_person=limit,
            current_request_count=current,
        )
