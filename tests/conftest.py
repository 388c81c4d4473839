"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from corrector.config import Settings
from corrector.credits import CreditGate, InMemoryQuotaStore, LoggingPaymentIntake
from corrector.models import (
    ContextItem,
    ExamImage,
    Principal,
    QuestionItem,
    Role,
    SessionResult,
    Verdict,
    VerdictPatch,
)
from corrector.session import SessionController

# Debounce used by timing tests: the product's 2000 ms scaled down by 10
DEBOUNCE = 0.2


# ==============================================================================
# Fake Oracle
# ==============================================================================


class FakeOracle:
    """
    In-memory grading oracle.

    Records every call with the loop time it was made at. Re-evaluations
    block on `release` when it is set to an unset Event.
    """

    def __init__(self, result: SessionResult):
        self.grade_result = result
        self.grade_error: Exception | None = None
        self.summary_text = "Updated summary"
        self.summary_error: Exception | None = None
        self.summary_delay = 0.0
        self.verdict = VerdictPatch(is_correct=True, score=10, feedback="Well done, you got it right.")
        self.reevaluate_error: Exception | None = None
        self.release: asyncio.Event | None = None

        self.grade_calls: list[tuple[bytes, str, str]] = []
        self.summary_calls: list[tuple[float, SessionResult]] = []
        self.reevaluate_calls: list[tuple[QuestionItem, str]] = []

    async def grade(self, image_bytes: bytes, mime_type: str, context: str) -> SessionResult:
        self.grade_calls.append((image_bytes, mime_type, context))
        if self.grade_error is not None:
            raise self.grade_error
        return self.grade_result.model_copy(deep=True)

    async def reevaluate(self, item: QuestionItem, context: str) -> VerdictPatch:
        self.reevaluate_calls.append((item, context))
        if self.release is not None:
            await self.release.wait()
        if self.reevaluate_error is not None:
            raise self.reevaluate_error
        return self.verdict

    async def summarize(self, result: SessionResult) -> str:
        self.summary_calls.append((asyncio.get_running_loop().time(), result))
        if self.summary_delay:
            await asyncio.sleep(self.summary_delay)
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary_text


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Sample Result Fixtures
# ==============================================================================


@pytest.fixture
def two_question_result() -> SessionResult:
    """Two questions scored 7/10 and 3/10."""
    return SessionResult(
        student_name="Ana Souza",
        summary="Original summary",
        items=[
            QuestionItem(
                sequence_index=0,
                label="1",
                text="What is 2 + 2?",
                student_answer="4",
                verdict=Verdict(is_correct=True, score=7, max_score=10),
                feedback="Correct.",
            ),
            QuestionItem(
                sequence_index=1,
                label="2",
                text="Name the chemical formula of water.",
                student_answer="HO",
                verdict=Verdict(is_correct=False, score=3, max_score=10),
                feedback="Almost. The correct answer is H₂O.",
            ),
        ],
        total_score=10,
        max_total_score=20,
    )


@pytest.fixture
def sample_result() -> SessionResult:
    """A graded exam with a supporting text and three questions."""
    return SessionResult(
        student_name="Ana Souza",
        institution="Escola Estadual Central",
        class_name="8º B",
        teacher_name="Prof. Lima",
        exam_date="12/03/2025",
        summary="Ana did well on arithmetic but struggled with chemistry.",
        full_transcript="Texto 1 ... 1) 2 + 2 = ? ...",
        items=[
            ContextItem(sequence_index=0, label="Texto 1", text="Read the text below."),
            QuestionItem(
                sequence_index=1,
                label="1",
                text="What is 2 + 2?",
                choices=["a) 3", "b) 4", "c) 5"],
                student_answer="b) 4",
                verdict=Verdict(is_correct=True, score=2.5, max_score=2.5),
                feedback="Correct.",
            ),
            QuestionItem(
                sequence_index=2,
                label="2",
                text="Write the formula of water.",
                student_answer="HO",
                verdict=Verdict(is_correct=False, score=0, max_score=2.5),
                feedback="The correct answer is H₂O.",
            ),
            QuestionItem(
                sequence_index=3,
                label="3",
                text="Explain photosynthesis.",
                student_answer="Plants make food from light.",
                verdict=Verdict(is_correct=False, score=3, max_score=5),
                feedback="Partially correct; mention CO₂ and water.",
            ),
        ],
        total_score=99,  # deliberately wrong; ingestion re-derives totals
        max_total_score=99,
    )


@pytest.fixture
def sample_grading_response() -> str:
    """Sample LLM grading response in JSON format."""
    return json.dumps(
        {
            "student_name": "Ana Souza",
            "institution": "Escola Estadual Central",
            "teacher_name": "Prof. Lima",
            "class_name": "8º B",
            "summary": "Good overall performance.",
            "full_transcript": "Texto 1 ... 1) 2 + 2 = ?",
            "items": [
                {"type": "context", "label": "Texto 1", "text": "Read the text below."},
                {
                    "type": "question",
                    "label": "1",
                    "text": "What is 2 + 2?",
                    "choices": ["a) 3", "b) 4"],
                    "student_answer": "b) 4",
                    "is_correct": True,
                    "score": 2.5,
                    "max_score": 2.5,
                    "feedback": "Correct.",
                },
                {
                    "type": "question",
                    "label": "2",
                    "text": "Write the formula of water.",
                    "student_answer": "HO",
                    "is_correct": False,
                    "score": 0,
                    "max_score": 2.5,
                    "feedback": "The correct answer is H₂O.",
                },
            ],
        },
        ensure_ascii=False,
    )


@pytest.fixture
def exam_image() -> ExamImage:
    return ExamImage(data=b"\x89PNG fake image", mime_type="image/png", source_name="exam.png")


# ==============================================================================
# Principal and Credit Fixtures
# ==============================================================================


@pytest.fixture
def standard_principal() -> Principal:
    return Principal(id="teacher-1", name="Teacher", role=Role.STANDARD, remaining_quota=3)


@pytest.fixture
def privileged_principal() -> Principal:
    return Principal(id="admin-1", name="Admin", role=Role.PRIVILEGED, remaining_quota=0)


@pytest.fixture
def quota_store(standard_principal: Principal, privileged_principal: Principal) -> InMemoryQuotaStore:
    return InMemoryQuotaStore([standard_principal, privileged_principal])


@pytest.fixture
def gate(quota_store: InMemoryQuotaStore) -> CreditGate:
    return CreditGate(quota_store)


# ==============================================================================
# Session Fixtures
# ==============================================================================


@pytest.fixture
def fake_oracle(sample_result: SessionResult) -> FakeOracle:
    return FakeOracle(sample_result)


@pytest.fixture
def controller(fake_oracle: FakeOracle, gate: CreditGate) -> SessionController:
    """Controller with a short debounce window for timing tests."""
    return SessionController(
        oracle=fake_oracle,
        gate=gate,
        payment_intake=LoggingPaymentIntake(),
        debounce_seconds=DEBOUNCE,
    )


@pytest.fixture
async def graded_controller(
    controller: SessionController, exam_image: ExamImage, standard_principal: Principal
) -> SessionController:
    """Controller with the sample exam already submitted."""
    await controller.submit(exam_image, "Answer key: 1) b  2) H2O", standard_principal)
    return controller


# ==============================================================================
# Settings and Mock Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        oracle_api_key="test-api-key-for-testing",
        oracle_base_url="https://test.api.local/",
        oracle_model="test-model",
        oracle_max_retries=2,
        summary_debounce_ms=200,
        output_directory=temp_dir / "output",
    )


def make_completion(content: str | None) -> MagicMock:
    """Build an object shaped like a chat completion response."""
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


@pytest.fixture
def mock_openai() -> MagicMock:
    """Mock AsyncOpenAI client to avoid actual API calls."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client
