"""
Credits Module.

Quota storage, the credit gate that guards submissions and the payment
intake that records purchase intents.
"""

from corrector.credits.gate import Authorization, CreditGate
from corrector.credits.payments import LoggingPaymentIntake, PaymentIntake, find_package
from corrector.credits.store import IdentityProvider, InMemoryQuotaStore, QuotaStore

__all__ = [
    "Authorization",
    "CreditGate",
    "IdentityProvider",
    "InMemoryQuotaStore",
    "LoggingPaymentIntake",
    "PaymentIntake",
    "QuotaStore",
    "find_package",
]
