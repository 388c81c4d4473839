"""
Tests for the session controller: submission, edits and session lifecycle.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from corrector.config import Settings
from corrector.credits import CreditGate, InMemoryQuotaStore, LoggingPaymentIntake, find_package
from corrector.errors import (
    AlreadyInFlight,
    InsufficientQuota,
    InvalidIndex,
    MalformedResponse,
    NoActiveSession,
    OracleUnavailable,
)
from corrector.models import ExamImage, Principal, Role, SessionResult
from corrector.output import ReportFormat
from corrector.session import SessionController, SummaryState

from conftest import FakeOracle


class TestSubmit:
    """Tests for exam submission."""

    async def test_successful_submission(
        self,
        controller: SessionController,
        fake_oracle: FakeOracle,
        quota_store: InMemoryQuotaStore,
        exam_image: ExamImage,
        standard_principal: Principal,
    ) -> None:
        outcome = await controller.submit(exam_image, "Answer key", standard_principal)

        assert outcome.quota_committed
        assert outcome.result.total_score == 5.5
        assert outcome.result.max_total_score == 10.0
        assert controller.result == outcome.result
        assert controller.context == "Answer key"
        assert fake_oracle.grade_calls == [(exam_image.data, "image/png", "Answer key")]
        assert quota_store.get(standard_principal.id).remaining_quota == 2

    async def test_outcome_is_a_snapshot(
        self, controller: SessionController, exam_image: ExamImage, standard_principal: Principal
    ) -> None:
        outcome = await controller.submit(exam_image, "", standard_principal)
        controller.edit_header("student_name", "Changed")

        assert outcome.result.student_name == "Ana Souza"

    async def test_insufficient_quota(
        self, controller: SessionController, fake_oracle: FakeOracle, exam_image: ExamImage
    ) -> None:
        broke = Principal(id="teacher-1", remaining_quota=0)

        with pytest.raises(InsufficientQuota):
            await controller.submit(exam_image, "", broke)

        assert fake_oracle.grade_calls == []
        assert controller.result is None

    async def test_privileged_is_never_charged(
        self,
        controller: SessionController,
        quota_store: InMemoryQuotaStore,
        exam_image: ExamImage,
        privileged_principal: Principal,
    ) -> None:
        outcome = await controller.submit(exam_image, "", privileged_principal)

        assert outcome.quota_committed
        assert quota_store.get(privileged_principal.id).remaining_quota == 0

    @pytest.mark.parametrize(
        "error,expected",
        [
            (OracleUnavailable("timeout"), OracleUnavailable),
            (MalformedResponse("not json", raw_response="oops"), MalformedResponse),
            (RuntimeError("unexpected"), OracleUnavailable),
        ],
    )
    async def test_oracle_failure_consumes_nothing(
        self,
        controller: SessionController,
        fake_oracle: FakeOracle,
        quota_store: InMemoryQuotaStore,
        exam_image: ExamImage,
        standard_principal: Principal,
        error: Exception,
        expected: type[Exception],
    ) -> None:
        fake_oracle.grade_error = error

        with pytest.raises(expected):
            await controller.submit(exam_image, "", standard_principal)

        assert controller.result is None
        assert not controller.is_submitting
        assert quota_store.get(standard_principal.id).remaining_quota == 3

    async def test_commit_called_once_on_success(
        self, fake_oracle: FakeOracle, exam_image: ExamImage, standard_principal: Principal
    ) -> None:
        store = AsyncMock()
        store.commit_consumption.return_value = True
        controller = SessionController(oracle=fake_oracle, gate=CreditGate(store))

        await controller.submit(exam_image, "", standard_principal)

        store.commit_consumption.assert_awaited_once_with(standard_principal.id)

    async def test_commit_not_called_on_failure(
        self, fake_oracle: FakeOracle, exam_image: ExamImage, standard_principal: Principal
    ) -> None:
        store = AsyncMock()
        controller = SessionController(oracle=fake_oracle, gate=CreditGate(store))
        fake_oracle.grade_error = OracleUnavailable("down")

        with pytest.raises(OracleUnavailable):
            await controller.submit(exam_image, "", standard_principal)

        store.commit_consumption.assert_not_awaited()

    async def test_store_unavailable_keeps_result(
        self,
        controller: SessionController,
        quota_store: InMemoryQuotaStore,
        exam_image: ExamImage,
        standard_principal: Principal,
    ) -> None:
        quota_store.available = False

        outcome = await controller.submit(exam_image, "", standard_principal)

        assert not outcome.quota_committed
        assert controller.result is not None
        assert controller.result.total_score == 5.5

    async def test_concurrent_submission_rejected(
        self,
        controller: SessionController,
        fake_oracle: FakeOracle,
        exam_image: ExamImage,
        standard_principal: Principal,
    ) -> None:
        release = asyncio.Event()
        original_grade = fake_oracle.grade

        async def slow_grade(*args: object) -> SessionResult:
            await release.wait()
            return await original_grade(*args)

        fake_oracle.grade = slow_grade  # type: ignore[method-assign]

        first = asyncio.create_task(controller.submit(exam_image, "", standard_principal))
        await asyncio.sleep(0)
        assert controller.is_submitting

        with pytest.raises(AlreadyInFlight):
            await controller.submit(exam_image, "", standard_principal)

        release.set()
        await first
        assert not controller.is_submitting

    async def test_resubmission_replaces_session(
        self,
        graded_controller: SessionController,
        fake_oracle: FakeOracle,
        exam_image: ExamImage,
        standard_principal: Principal,
        two_question_result: SessionResult,
    ) -> None:
        graded_controller.edit_item(1, "score", 0)
        assert graded_controller.summary_state is SummaryState.PENDING

        fake_oracle.grade_result = two_question_result
        await graded_controller.submit(exam_image, "second exam", standard_principal)

        assert graded_controller.summary_state is SummaryState.IDLE
        assert graded_controller.result.total_score == 10
        assert graded_controller.context == "second exam"


class TestEdits:
    """Tests for edits routed through the controller."""

    async def test_worked_scenario(
        self,
        controller: SessionController,
        fake_oracle: FakeOracle,
        exam_image: ExamImage,
        standard_principal: Principal,
        two_question_result: SessionResult,
    ) -> None:
        fake_oracle.grade_result = two_question_result
        await controller.submit(exam_image, "", standard_principal)
        assert (controller.result.total_score, controller.result.max_total_score) == (10, 20)

        controller.edit_item(0, "score", 8.5)
        assert controller.result.total_score == 11.5
        assert controller.summary_state is SummaryState.PENDING

        controller.edit_item(1, "max_score", 5)
        assert (controller.result.total_score, controller.result.max_total_score) == (11.5, 15)

    def test_edit_before_submission(self, controller: SessionController) -> None:
        with pytest.raises(NoActiveSession):
            controller.edit_item(0, "score", 1)

    async def test_lenient_controller_ignores_bad_edits(
        self,
        fake_oracle: FakeOracle,
        gate: CreditGate,
        exam_image: ExamImage,
        standard_principal: Principal,
    ) -> None:
        controller = SessionController(oracle=fake_oracle, gate=gate, strict=False)
        await controller.submit(exam_image, "", standard_principal)

        assert controller.edit_item(99, "score", 1) == frozenset()
        assert controller.edit_item(1, "colour", "red") == frozenset()
        assert await controller.reevaluate_item(0) is None
        assert await controller.reevaluate_item(99) is None

    async def test_strict_controller_raises(self, graded_controller: SessionController) -> None:
        with pytest.raises(InvalidIndex):
            graded_controller.edit_item(99, "score", 1)

    def test_from_settings(self, test_settings: Settings, fake_oracle: FakeOracle, gate: CreditGate) -> None:
        controller = SessionController.from_settings(test_settings, oracle=fake_oracle, gate=gate)

        assert controller.summary_state is SummaryState.IDLE
        assert controller.result is None


class TestSessionLifecycle:
    """Tests for reset, report export and purchase intents."""

    async def test_reset(self, graded_controller: SessionController) -> None:
        graded_controller.reset()

        assert graded_controller.result is None
        assert graded_controller.context == ""
        with pytest.raises(NoActiveSession):
            graded_controller.render_report(ReportFormat.JSON)

    async def test_render_report(self, graded_controller: SessionController) -> None:
        graded_controller.edit_header("student_name", "Edited Name")

        data = json.loads(graded_controller.render_report(ReportFormat.JSON))

        assert data["student_name"] == "Edited Name"
        assert data["total_score"] == 5.5

    async def test_request_credits(
        self, fake_oracle: FakeOracle, gate: CreditGate, standard_principal: Principal
    ) -> None:
        intake = LoggingPaymentIntake()
        controller = SessionController(oracle=fake_oracle, gate=gate, payment_intake=intake)
        package = find_package("Popular")

        controller.request_credits(standard_principal, package)
        await asyncio.sleep(0.01)

        assert intake.intents == [(standard_principal.id, package)]

    async def test_request_credits_failure_is_logged(
        self, fake_oracle: FakeOracle, gate: CreditGate, standard_principal: Principal, caplog
    ) -> None:
        intake = AsyncMock()
        intake.record_purchase_intent.side_effect = ConnectionError("payments down")
        controller = SessionController(oracle=fake_oracle, gate=gate, payment_intake=intake)

        controller.request_credits(standard_principal, find_package("Basic"))
        await asyncio.sleep(0.01)

        assert "Recording purchase intent failed" in caplog.text

    async def test_two_sessions_share_quota(
        self, fake_oracle: FakeOracle, exam_image: ExamImage
    ) -> None:
        """Two sessions racing for the last unit: both graded, one charged."""
        store = InMemoryQuotaStore([Principal(id="shared", role=Role.STANDARD, remaining_quota=1)])
        principal = await store.current_principal("shared")
        first = SessionController(oracle=fake_oracle, gate=CreditGate(store))
        second = SessionController(oracle=fake_oracle, gate=CreditGate(store))

        outcomes = await asyncio.gather(
            first.submit(exam_image, "", principal), second.submit(exam_image, "", principal)
        )

        assert sorted(o.quota_committed for o in outcomes) == [False, True]
        assert store.get("shared").remaining_quota == 0
