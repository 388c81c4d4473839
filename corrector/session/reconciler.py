"""
Reconciler - asynchronous orchestration of one correction session.

Two independent mechanisms live here:

Summary refresh
    Qualifying edits arm a debounce timer. Each new edit restarts it; when
    the window elapses with no further edit, one summarize call is issued
    on a snapshot of the result. Every call gets a monotonically increasing
    request id and only the response matching the request currently in
    flight is applied. A newer cycle or a session reset turns older
    responses stale and they are dropped on arrival.

        IDLE --edit--> PENDING --timer--> IN_FLIGHT --response--> IDLE
                          ^  |                |
                          +--+ edit           +--edit--> PENDING

Per-item re-evaluation
    At most one re-evaluation per item is in flight; different items run
    concurrently. A successful verdict is patched into the item and counts
    as a qualifying edit for the summary refresh.

All callbacks run on the event loop thread, so model mutations never
interleave.
"""

import asyncio
import logging
from enum import Enum

from corrector.errors import AlreadyInFlight, InvalidVariant, OracleError, OracleUnavailable
from corrector.grading.engine import GradingOracle
from corrector.models import QuestionItem, SessionResult, VerdictPatch
from corrector.session.result_model import ResultModel

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class SummaryState(str, Enum):
    """State of the summary refresh cycle."""

    IDLE = "idle"
    PENDING = "pending"  # debounce timer armed
    IN_FLIGHT = "in_flight"  # summarize call issued


class Reconciler:
    """
    Debounced summary refresh and per-item re-evaluation for one session.

    Args:
        oracle: Grading oracle used for summarize and reevaluate calls.
        model: Result model of the session.
        debounce_seconds: Quiet period after the last qualifying edit.
    """

    def __init__(
        self,
        oracle: GradingOracle,
        model: ResultModel,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        self._oracle = oracle
        self._model = model
        self._debounce_seconds = debounce_seconds

        self._state = SummaryState.IDLE
        self._deadline: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._summary_task: asyncio.Task[None] | None = None
        self._request_id = 0
        self._in_flight_id: int | None = None
        self._generation = 0
        self._reevaluating: set[int] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> SummaryState:
        return self._state

    @property
    def pending_deadline(self) -> float | None:
        """Loop time at which the armed timer fires, if any."""
        return self._deadline

    @property
    def last_request_id(self) -> int:
        return self._request_id

    @property
    def generation(self) -> int:
        """Incremented on every reset; responses from older generations are dropped."""
        return self._generation

    @property
    def reevaluating(self) -> frozenset[int]:
        return frozenset(self._reevaluating)

    def is_reevaluating(self, item_index: int) -> bool:
        return item_index in self._reevaluating

    async def wait_until_idle(self) -> None:
        """Wait until no summary refresh is pending or in flight."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Summary refresh
    # ------------------------------------------------------------------

    def notify_edit(self) -> None:
        """
        Register a qualifying edit and (re)arm the debounce timer.

        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()

        # A newer cycle supersedes whatever request is in flight
        self._in_flight_id = None
        self._deadline = loop.time() + self._debounce_seconds
        self._timer = loop.call_later(self._debounce_seconds, self._fire_summary, self._generation)
        self._set_state(SummaryState.PENDING)
        logger.debug("Summary refresh armed for %.3fs from now", self._debounce_seconds)

    def _fire_summary(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._state is not SummaryState.PENDING:
            return

        if self._summary_task is not None and not self._summary_task.done():
            self._summary_task.cancel()

        self._request_id += 1
        request_id = self._request_id
        self._in_flight_id = request_id
        self._deadline = None
        self._set_state(SummaryState.IN_FLIGHT)

        snapshot = self._model.snapshot()
        logger.info("Refreshing summary (request %d)", request_id)
        self._summary_task = asyncio.get_running_loop().create_task(
            self._refresh_summary(request_id, generation, snapshot)
        )

    async def _refresh_summary(self, request_id: int, generation: int, snapshot: SessionResult) -> None:
        try:
            summary = await self._oracle.summarize(snapshot)
        except asyncio.CancelledError:
            logger.debug("Summary request %d cancelled", request_id)
            raise
        except Exception as e:
            # Best effort: keep the previous summary and never surface the failure
            logger.warning("Summary request %d failed, keeping previous summary: %s", request_id, e)
            self._finish(request_id)
            return

        if generation != self._generation or request_id != self._in_flight_id:
            logger.info("Dropping stale summary response %d", request_id)
            return

        if summary.strip():
            self._model.apply_summary(summary.strip())
        else:
            logger.info("Summary request %d returned empty text, keeping previous summary", request_id)
        self._finish(request_id)

    def _finish(self, request_id: int) -> None:
        if self._in_flight_id == request_id:
            self._in_flight_id = None
            self._set_state(SummaryState.IDLE)

    def _set_state(self, state: SummaryState) -> None:
        self._state = state
        if state is SummaryState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    # ------------------------------------------------------------------
    # Re-evaluation
    # ------------------------------------------------------------------

    async def reevaluate(self, item_index: int, context: str) -> VerdictPatch | None:
        """
        Re-judge one question with its current edited state.

        Returns:
            The applied verdict patch, or None if the session was reset
            while the oracle was working (the response is dropped).

        Raises:
            AlreadyInFlight: If this item is already being re-evaluated.
            InvalidIndex: If the index is out of range.
            InvalidVariant: If the item is a context row.
            OracleUnavailable / MalformedResponse: If the oracle call fails.
        """
        if item_index in self._reevaluating:
            raise AlreadyInFlight("re-evaluation", item_index)

        item = self._model.item(item_index)
        if not isinstance(item, QuestionItem):
            raise InvalidVariant("verdict", "context item")

        generation = self._generation
        request = item.model_copy(deep=True)
        self._reevaluating.add(item_index)
        try:
            patch = await self._oracle.reevaluate(request, context)
        except OracleError:
            raise
        except Exception as e:
            raise OracleUnavailable(f"Re-evaluation failed: {e}", cause=e) from e
        finally:
            if generation == self._generation:
                self._reevaluating.discard(item_index)

        if generation != self._generation:
            logger.info("Dropping re-evaluation of item %d: session was reset", item_index)
            return None

        self._model.apply_verdict_patch(item_index, patch)
        logger.info(
            "Re-evaluated item %d: score %s (correct=%s)", item_index, patch.score, patch.is_correct
        )
        self.notify_edit()
        return patch

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """
        Cancel the pending timer and in-flight summary, and make every
        outstanding response stale.
        """
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._summary_task is not None and not self._summary_task.done():
            self._summary_task.cancel()
        self._summary_task = None
        self._in_flight_id = None
        self._deadline = None
        self._reevaluating.clear()
        self._set_state(SummaryState.IDLE)
