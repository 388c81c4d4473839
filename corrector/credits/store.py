"""
Quota store and identity provider boundary.

The store is the only state shared between concurrent sessions of the same
principal, so `commit_consumption` must be an atomic decrement-if-sufficient.
The in-memory implementation serializes commits behind an asyncio lock.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

from corrector.errors import StoreUnavailable
from corrector.models import Principal, Role

logger = logging.getLogger(__name__)


@runtime_checkable
class QuotaStore(Protocol):
    """Persistence boundary for per-principal quotas."""

    async def commit_consumption(self, principal_id: str) -> bool:
        """
        Consume one submission for the principal.

        Returns:
            True if a unit was consumed (or the principal is privileged),
            False if the principal had nothing left to consume.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    """Returns the authenticated principal with its current quota."""

    async def current_principal(self, principal_id: str) -> Principal: ...


class InMemoryQuotaStore:
    """
    Process-local quota store.

    Holds one Principal per id. Useful for the CLI and for tests; a hosted
    deployment would put the same contract in front of its database.
    """

    def __init__(self, principals: list[Principal] | None = None):
        self._principals: dict[str, Principal] = {p.id: p for p in principals or []}
        self._lock = asyncio.Lock()
        self.available = True

    def add(self, principal: Principal) -> None:
        self._principals[principal.id] = principal

    def get(self, principal_id: str) -> Principal:
        """Return the stored principal, raising KeyError if unknown."""
        return self._principals[principal_id]

    async def current_principal(self, principal_id: str) -> Principal:
        self._check_available(principal_id)
        return self.get(principal_id)

    async def commit_consumption(self, principal_id: str) -> bool:
        async with self._lock:
            self._check_available(principal_id)
            principal = self._principals.get(principal_id)
            if principal is None:
                logger.warning("Commit for unknown principal '%s'", principal_id)
                return False
            if principal.role == Role.PRIVILEGED:
                return True
            if principal.remaining_quota <= 0:
                return False
            self._principals[principal_id] = principal.model_copy(
                update={"remaining_quota": principal.remaining_quota - 1}
            )
            logger.info(
                "Consumed one submission for '%s' (%d left)",
                principal_id,
                principal.remaining_quota - 1,
            )
            return True

    async def grant(self, principal_id: str, amount: int) -> Principal:
        """
        Add (or with a negative amount, remove) submissions for a principal.

        The balance never drops below zero.
        """
        async with self._lock:
            self._check_available(principal_id)
            principal = self.get(principal_id)
            updated = principal.model_copy(
                update={"remaining_quota": max(0, principal.remaining_quota + amount)}
            )
            self._principals[principal_id] = updated
            logger.info(
                "Adjusted quota for '%s' by %+d (now %d)",
                principal_id,
                amount,
                updated.remaining_quota,
            )
            return updated

    def _check_available(self, principal_id: str) -> None:
        if not self.available:
            raise StoreUnavailable(principal_id)
