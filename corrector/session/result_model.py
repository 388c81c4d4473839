"""
Result model - the single writer of a session's correction result.

Every edit coming from the presentation layer or from re-evaluation goes
through this class. Edits that touch a score or a max score recompute the
totals before returning, so the result is never observed with stale totals.

Edit methods return the names of the fields that actually changed. An edit
that was ignored (a score written to a context row) or that didn't change
anything returns an empty set.
"""

import logging
import math
from typing import Any

from corrector.errors import InvalidIndex, InvalidVariant, NoActiveSession
from corrector.models import (
    HEADER_FIELDS,
    ContextItem,
    QuestionItem,
    SessionResult,
    VerdictPatch,
)
from corrector.session.aggregation import recompute

logger = logging.getLogger(__name__)

COMMON_ITEM_FIELDS: frozenset[str] = frozenset({"label", "text"})
QUESTION_ITEM_FIELDS: frozenset[str] = frozenset(
    {"choices", "student_answer", "feedback", "is_correct", "score", "max_score"}
)
VERDICT_FIELDS: frozenset[str] = frozenset({"is_correct", "score", "max_score"})
NUMERIC_FIELDS: frozenset[str] = frozenset({"score", "max_score"})
EDITABLE_HEADER_FIELDS: frozenset[str] = HEADER_FIELDS | {"summary"}

Changes = frozenset[str]
_NO_CHANGE: Changes = frozenset()


def coerce_number(value: Any) -> float:
    """Read a numeric edit the way a form field would; garbage becomes 0."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y", "sim"}
    return bool(value)


class ResultModel:
    """
    Owns the mutable SessionResult of one session.

    Args:
        strict: Raise InvalidIndex/InvalidVariant on bad edits. When False,
            those edits are logged and ignored.
    """

    def __init__(self, strict: bool = True):
        self._strict = strict
        self._result: SessionResult | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def result(self) -> SessionResult | None:
        """The live result. Treat as read-only; edit through the apply_* methods."""
        return self._result

    @property
    def has_result(self) -> bool:
        return self._result is not None

    def snapshot(self) -> SessionResult:
        """Return a deep copy of the current result."""
        return self._require("snapshot the result").model_copy(deep=True)

    def item(self, item_index: int) -> ContextItem | QuestionItem:
        result = self._require("read an item")
        if not 0 <= item_index < len(result.items):
            raise InvalidIndex(item_index, len(result.items))
        return result.items[item_index]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ingest(self, result: SessionResult) -> SessionResult:
        """
        Take ownership of a freshly graded result and stamp its totals.

        The oracle's own totals are discarded; they are always re-derived
        from the items.
        """
        owned = result.model_copy(deep=True)
        totals = recompute(owned.items)
        owned.total_score = totals.total_score
        owned.max_total_score = totals.max_total_score
        self._result = owned
        logger.info(
            "Ingested result with %d items (%s / %s)",
            len(owned.items),
            owned.total_score,
            owned.max_total_score,
        )
        return owned

    def reset(self) -> None:
        """Discard the current result."""
        self._result = None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def apply_header_edit(self, field: str, value: Any) -> Changes:
        """
        Edit a header field (student, institution, class, teacher, date,
        transcript) or the summary text.
        """
        result = self._require("edit the header")
        if field not in EDITABLE_HEADER_FIELDS:
            return self._reject(InvalidVariant(field, "session header"))

        text = "" if value is None else str(value)
        if getattr(result, field) == text:
            return _NO_CHANGE
        setattr(result, field, text)
        return frozenset({field})

    def apply_field_edit(self, item_index: int, field: str, value: Any) -> Changes:
        """
        Edit one field of one item.

        Question-only fields written to a context row are ignored without
        mutating anything.
        """
        result = self._require("edit an item")
        if not 0 <= item_index < len(result.items):
            return self._reject(InvalidIndex(item_index, len(result.items)))

        item = result.items[item_index]
        if field not in COMMON_ITEM_FIELDS and field not in QUESTION_ITEM_FIELDS:
            return self._reject(InvalidVariant(field, f"{item.kind} item"))

        if field in COMMON_ITEM_FIELDS:
            return self._set_text(item, field, value)

        if isinstance(item, ContextItem):
            logger.debug("Ignoring '%s' edit on context item %d", field, item_index)
            return _NO_CHANGE

        if field in VERDICT_FIELDS:
            return self._set_verdict_field(result, item, field, value)
        if field == "choices":
            if isinstance(value, str):
                choices = [value] if value else []
            else:
                choices = [str(choice) for choice in (value or [])]
            if item.choices == choices:
                return _NO_CHANGE
            item.choices = choices
            return frozenset({field})
        return self._set_text(item, field, value)

    def apply_choice_edit(self, item_index: int, choice_index: int, value: Any) -> Changes:
        """Edit a single multiple-choice alternative of a question."""
        result = self._require("edit a choice")
        if not 0 <= item_index < len(result.items):
            return self._reject(InvalidIndex(item_index, len(result.items)))

        item = result.items[item_index]
        if isinstance(item, ContextItem):
            logger.debug("Ignoring choice edit on context item %d", item_index)
            return _NO_CHANGE
        if not 0 <= choice_index < len(item.choices):
            return self._reject(InvalidIndex(choice_index, len(item.choices)))

        text = "" if value is None else str(value)
        if item.choices[choice_index] == text:
            return _NO_CHANGE
        choices = list(item.choices)
        choices[choice_index] = text
        item.choices = choices
        return frozenset({"choices"})

    def apply_verdict_patch(self, item_index: int, patch: VerdictPatch) -> Changes:
        """Apply a re-evaluation verdict to a question and recompute the totals."""
        result = self._require("patch a verdict")
        if not 0 <= item_index < len(result.items):
            return self._reject(InvalidIndex(item_index, len(result.items)))

        item = result.items[item_index]
        if isinstance(item, ContextItem):
            logger.debug("Ignoring verdict patch on context item %d", item_index)
            return _NO_CHANGE

        changed: set[str] = set()
        if item.verdict.is_correct != patch.is_correct:
            changed.add("is_correct")
        if item.verdict.score != patch.score:
            changed.add("score")
        if item.feedback != patch.feedback:
            changed.add("feedback")

        item.verdict = item.verdict.model_copy(
            update={"is_correct": patch.is_correct, "score": patch.score}
        )
        item.feedback = patch.feedback
        changed |= self._restamp_totals(result)
        return frozenset(changed)

    def apply_summary(self, summary: str) -> Changes:
        """Replace the summary. Used by the reconciler after a refresh."""
        return self.apply_header_edit("summary", summary)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_text(self, item: ContextItem | QuestionItem, field: str, value: Any) -> Changes:
        text = "" if value is None else str(value)
        if getattr(item, field) == text:
            return _NO_CHANGE
        setattr(item, field, text)
        return frozenset({field})

    def _set_verdict_field(
        self, result: SessionResult, item: QuestionItem, field: str, value: Any
    ) -> Changes:
        new_value: float | bool
        if field in NUMERIC_FIELDS:
            new_value = coerce_number(value)
        else:
            new_value = coerce_bool(value)

        if getattr(item.verdict, field) == new_value:
            return _NO_CHANGE
        setattr(item.verdict, field, new_value)

        changed = {field}
        if field in NUMERIC_FIELDS:
            changed |= self._restamp_totals(result)
        return frozenset(changed)

    def _restamp_totals(self, result: SessionResult) -> set[str]:
        totals = recompute(result.items)
        changed: set[str] = set()
        if result.total_score != totals.total_score:
            result.total_score = totals.total_score
            changed.add("total_score")
        if result.max_total_score != totals.max_total_score:
            result.max_total_score = totals.max_total_score
            changed.add("max_total_score")
        return changed

    def _require(self, operation: str) -> SessionResult:
        if self._result is None:
            raise NoActiveSession(operation)
        return self._result

    def _reject(self, error: InvalidIndex | InvalidVariant) -> Changes:
        if self._strict:
            raise error
        logger.warning("Ignoring invalid edit: %s", error)
        return _NO_CHANGE
