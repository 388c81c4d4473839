"""
Credit gate.

Authorizes a submission against the caller's role and quota, and commits
the consumption once the grading oracle has produced a usable result.
Charging happens after success and never before, so failed or malformed
gradings cost nothing.
"""

import logging

from pydantic import BaseModel, ConfigDict

from corrector.credits.store import QuotaStore
from corrector.errors import InsufficientQuota, StoreUnavailable
from corrector.models import Principal

logger = logging.getLogger(__name__)


class Authorization(BaseModel):
    """Outcome of a gate check."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    allowed: bool
    error: InsufficientQuota | None = None


class CreditGate:
    """
    Guards submissions behind the principal's quota.

    Args:
        store: Quota store receiving the consumption commits.
    """

    def __init__(self, store: QuotaStore):
        self._store = store

    def authorize(self, principal: Principal) -> Authorization:
        """Allow privileged principals and standard ones with quota left."""
        if principal.is_privileged or principal.remaining_quota > 0:
            return Authorization(allowed=True)
        return Authorization(
            allowed=False,
            error=InsufficientQuota(principal.id, principal.remaining_quota),
        )

    def require(self, principal: Principal) -> None:
        """
        Raise if the principal may not submit.

        Raises:
            InsufficientQuota: If the gate denies the principal.
        """
        authorization = self.authorize(principal)
        if authorization.error is not None:
            logger.info("Submission denied for '%s': no quota left", principal.id)
            raise authorization.error

    async def commit(self, principal: Principal) -> bool:
        """
        Record one consumption for a successful grading.

        The store leaves privileged principals untouched.

        Returns:
            True if the store recorded the consumption.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        try:
            consumed = await self._store.commit_consumption(principal.id)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(principal.id, cause=e) from e

        if not consumed:
            logger.warning(
                "Quota for '%s' was exhausted by a concurrent session; consumption not recorded",
                principal.id,
            )
        return consumed
