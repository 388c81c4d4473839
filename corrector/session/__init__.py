"""
Session Engine Module.

Result model, aggregation, reconciliation and the controller façade of a
correction session.
"""

from corrector.session.aggregation import Totals, recompute, round2
from corrector.session.controller import SUMMARY_TRIGGERS, SessionController
from corrector.session.reconciler import Reconciler, SummaryState
from corrector.session.result_model import ResultModel

__all__ = [
    "Reconciler",
    "ResultModel",
    "SUMMARY_TRIGGERS",
    "SessionController",
    "SummaryState",
    "Totals",
    "recompute",
    "round2",
]
