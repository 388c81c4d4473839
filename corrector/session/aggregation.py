"""
Aggregation engine.

Pure functions that derive a session's totals from its items. Context rows
never contribute; missing scores count as zero.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from corrector.models import QuestionItem

_CENT = Decimal("0.01")


class Totals(NamedTuple):
    """Derived totals of a session."""

    total_score: float
    max_total_score: float


def _to_decimal(value: float | None) -> Decimal:
    return Decimal(str(value)) if value else Decimal(0)


def round2(value: float | Decimal) -> float:
    """Round to two decimals, halves away from zero."""
    if not isinstance(value, Decimal):
        value = _to_decimal(value)
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def recompute(items: Iterable[object]) -> Totals:
    """
    Recompute the totals for a sequence of grading items.

    Sums are taken in Decimal so that e.g. 0.1 + 0.2 lands on 0.3.

    Args:
        items: Grading items of a session, in any order.

    Returns:
        Totals with the rounded sums of score and max score over questions.
    """
    total = Decimal(0)
    maximum = Decimal(0)
    for item in items:
        if not isinstance(item, QuestionItem):
            continue
        total += _to_decimal(item.verdict.score)
        maximum += _to_decimal(item.verdict.max_score)
    return Totals(total_score=round2(total), max_total_score=round2(maximum))
