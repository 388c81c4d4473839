"""
Payment intake.

Purchases are settled outside the engine: the intake only records the
intent, and credits are granted later by an administrator.
"""

import logging
from typing import Protocol

from corrector.models import CREDIT_PACKAGES, CreditPackage

logger = logging.getLogger(__name__)


class PaymentIntake(Protocol):
    async def record_purchase_intent(self, principal_id: str, package: CreditPackage) -> None: ...


class LoggingPaymentIntake:
    """Records purchase intents in the application log."""

    def __init__(self) -> None:
        self.intents: list[tuple[str, CreditPackage]] = []

    async def record_purchase_intent(self, principal_id: str, package: CreditPackage) -> None:
        self.intents.append((principal_id, package))
        logger.info(
            "[PAYMENT] Principal %s reported a payment of %s for %d credits (%s)",
            principal_id,
            package.price,
            package.credits,
            package.label,
        )


def find_package(label: str) -> CreditPackage:
    """
    Look up a credit package by label (case-insensitive).

    Raises:
        KeyError: If no package has that label.
    """
    for package in CREDIT_PACKAGES:
        if package.label.lower() == label.lower():
            return package
    raise KeyError(f"Unknown credit package: '{label}'")
