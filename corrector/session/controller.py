"""
Session controller - the façade the presentation layer talks to.

Composes the result model, the credit gate and the reconciler. Every
command that mutates the session enters here, on the event loop thread,
so edits and patches never interleave mid-mutation.
"""

import asyncio
import logging
from typing import Any

from corrector.config import Settings
from corrector.credits.gate import CreditGate
from corrector.credits.payments import PaymentIntake
from corrector.errors import (
    AlreadyInFlight,
    InvalidIndex,
    InvalidVariant,
    NoActiveSession,
    OracleError,
    OracleUnavailable,
    StoreUnavailable,
)
from corrector.grading.engine import GradingOracle
from corrector.models import (
    CreditPackage,
    ExamImage,
    Principal,
    SessionResult,
    SubmissionOutcome,
    VerdictPatch,
)
from corrector.output.renderer import ReportFormat, ReportRenderer
from corrector.session.reconciler import DEFAULT_DEBOUNCE_SECONDS, Reconciler, SummaryState
from corrector.session.result_model import Changes, ResultModel

logger = logging.getLogger(__name__)

# Changes that make the current summary outdated
SUMMARY_TRIGGERS: frozenset[str] = frozenset({"score", "is_correct", "total_score"})


class SessionController:
    """
    One correction session: submit an exam, edit the result, re-evaluate
    questions, reset.

    Collaborators are injected so the engine can run against fakes.

    Args:
        oracle: Grading oracle.
        gate: Credit gate in front of the quota store.
        renderer: Report renderer for exports.
        payment_intake: Receiver of purchase intents.
        debounce_seconds: Quiet period before the summary refreshes.
        strict: Raise on invalid indexes/fields instead of ignoring them.
    """

    def __init__(
        self,
        oracle: GradingOracle,
        gate: CreditGate,
        renderer: ReportRenderer | None = None,
        payment_intake: PaymentIntake | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        strict: bool = True,
    ):
        self._oracle = oracle
        self._gate = gate
        self._renderer = renderer or ReportRenderer()
        self._payment_intake = payment_intake
        self._strict = strict
        self._model = ResultModel(strict=strict)
        self._reconciler = Reconciler(oracle, self._model, debounce_seconds=debounce_seconds)
        self._context = ""
        self._submitting = False
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        oracle: GradingOracle,
        gate: CreditGate,
        payment_intake: PaymentIntake | None = None,
    ) -> "SessionController":
        return cls(
            oracle=oracle,
            gate=gate,
            payment_intake=payment_intake,
            debounce_seconds=settings.summary_debounce_seconds,
            strict=settings.strict_edits,
        )

    # ------------------------------------------------------------------
    # State exposed to the presentation layer
    # ------------------------------------------------------------------

    @property
    def result(self) -> SessionResult | None:
        """Current result, or None before the first successful submission."""
        return self._model.result

    @property
    def context(self) -> str:
        """Grading context the current session was submitted with."""
        return self._context

    @property
    def summary_state(self) -> SummaryState:
        return self._reconciler.state

    @property
    def is_updating_summary(self) -> bool:
        return self._reconciler.state is SummaryState.IN_FLIGHT

    @property
    def reevaluating_items(self) -> frozenset[int]:
        return self._reconciler.reevaluating

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    async def wait_for_summary(self) -> None:
        """Wait until any pending or running summary refresh has finished."""
        await self._reconciler.wait_until_idle()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(self, image: ExamImage, context: str, principal: Principal) -> SubmissionOutcome:
        """
        Grade an exam and start a new session with the result.

        Sequence: authorize, grade, commit consumption, ingest. Nothing
        changes if authorization or grading fails.

        Raises:
            AlreadyInFlight: If another submission is still running.
            InsufficientQuota: If the credit gate denies the principal.
            OracleUnavailable / MalformedResponse: If grading fails.
        """
        if self._submitting:
            raise AlreadyInFlight("submission")
        self._gate.require(principal)

        self._submitting = True
        try:
            try:
                graded = await self._oracle.grade(image.data, image.mime_type, context)
            except OracleError as e:
                logger.error("Grading failed for '%s': %s", image.source_name or "exam", e)
                raise
            except Exception as e:
                raise OracleUnavailable(f"Grading failed: {e}", cause=e) from e

            try:
                quota_committed = await self._gate.commit(principal)
            except StoreUnavailable as e:
                # The grading is already done; keep it and report the bookkeeping failure
                logger.error("Could not record consumption for '%s': %s", principal.id, e)
                quota_committed = False

            self._reconciler.reset()
            self._model.ingest(graded)
            self._context = context
        finally:
            self._submitting = False

        return SubmissionOutcome(result=self._model.snapshot(), quota_committed=quota_committed)

    def edit_header(self, field: str, value: Any) -> Changes:
        """Edit a header field. Header edits never refresh the summary."""
        return self._model.apply_header_edit(field, value)

    def edit_item(self, item_index: int, field: str, value: Any) -> Changes:
        """Edit one field of one item; score and verdict edits refresh the summary."""
        changes = self._model.apply_field_edit(item_index, field, value)
        self._after_item_edit(changes)
        return changes

    def edit_choice(self, item_index: int, choice_index: int, value: Any) -> Changes:
        """Edit one alternative of a multiple-choice question."""
        changes = self._model.apply_choice_edit(item_index, choice_index, value)
        self._after_item_edit(changes)
        return changes

    async def reevaluate_item(self, item_index: int) -> VerdictPatch | None:
        """
        Ask the oracle to re-judge one question from its edited state.

        Returns:
            The applied patch, or None if the response was dropped because
            the session was reset, or the request was ignored in lenient mode.

        Raises:
            AlreadyInFlight: If the item is already being re-evaluated.
            OracleUnavailable / MalformedResponse: If the oracle call fails.
        """
        try:
            return await self._reconciler.reevaluate(item_index, self._context)
        except (InvalidIndex, InvalidVariant) as e:
            if self._strict:
                raise
            logger.warning("Ignoring re-evaluation request: %s", e)
            return None

    def reset(self) -> None:
        """Discard the session; late responses for it are dropped."""
        self._reconciler.reset()
        self._model.reset()
        self._context = ""
        logger.info("Session reset")

    def render_report(self, fmt: ReportFormat) -> bytes:
        """Render the current result for download."""
        if self._model.result is None:
            raise NoActiveSession("render a report")
        return self._renderer.render(self._model.snapshot(), fmt)

    def request_credits(self, principal: Principal, package: CreditPackage) -> None:
        """
        Record a purchase intent without waiting for it.

        Must be called from the event loop thread.
        """
        if self._payment_intake is None:
            logger.warning("No payment intake configured; dropping purchase intent")
            return
        task = asyncio.get_running_loop().create_task(
            self._payment_intake.record_purchase_intent(principal.id, package)
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _after_item_edit(self, changes: Changes) -> None:
        if changes & SUMMARY_TRIGGERS:
            self._reconciler.notify_edit()

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Recording purchase intent failed: %s", task.exception())
