"""
Pydantic models for the Corrector system.

These models define the schemas for:
- Grading items (context rows and scored questions) and their verdicts
- The correction result of one session
- Principals, quotas and credit packages
- Exam images submitted for grading

Session models are mutable: the result model edits them in place and
assignment is validated so a bad edit can never corrupt the session.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ==============================================================================
# Grading Item Models
# ==============================================================================


class Verdict(BaseModel):
    """Correctness, score and maximum score of a question."""

    model_config = ConfigDict(validate_assignment=True)

    is_correct: bool = Field(default=False)
    score: float = Field(default=0.0, description="Points awarded")
    max_score: float = Field(default=0.0, description="Points available")


class ContextItem(BaseModel):
    """
    Shared supporting material (a reading text, a comic strip, instructions).

    Context rows are never scored and never contribute to the totals.
    """

    model_config = ConfigDict(validate_assignment=True)

    kind: Literal["context"] = "context"
    sequence_index: int = Field(..., ge=0, description="Stable position in the exam")
    label: str = Field(default="", description="Display identifier, e.g. 'Texto 1'")
    text: str = Field(default="", description="Body of the supporting text")


class QuestionItem(BaseModel):
    """A question that requires an answer and carries a verdict."""

    model_config = ConfigDict(validate_assignment=True)

    kind: Literal["question"] = "question"
    sequence_index: int = Field(..., ge=0, description="Stable position in the exam")
    label: str = Field(default="", description="Question number, e.g. '3' or '13 a'")
    text: str = Field(default="", description="Question statement")
    choices: list[str] = Field(
        default_factory=list,
        description="Multiple-choice alternatives, empty for open questions",
    )
    student_answer: str = Field(default="")
    verdict: Verdict = Field(default_factory=Verdict)
    feedback: str = Field(default="")


GradingItem = Annotated[Union[ContextItem, QuestionItem], Field(discriminator="kind")]


class VerdictPatch(BaseModel):
    """Revised judgement of a single question returned by re-evaluation."""

    model_config = ConfigDict(frozen=True)

    is_correct: bool
    score: float
    feedback: str


# ==============================================================================
# Session Result Models
# ==============================================================================


class ScoreBand(str, Enum):
    """Coarse performance band used to colour scores in reports."""

    HIGH = "high"  # 70% and above
    MEDIUM = "medium"  # 50% to 70%
    LOW = "low"


class SessionResult(BaseModel):
    """
    The correction result of one exam.

    `total_score` and `max_total_score` are derived values. They are written
    only by the aggregation engine through the result model.
    """

    model_config = ConfigDict(validate_assignment=True)

    student_name: str = Field(default="", description="Name of the examined student")
    institution: str = Field(default="")
    class_name: str = Field(default="")
    teacher_name: str = Field(default="")
    exam_date: str = Field(default="", description="Free text, never parsed")
    summary: str = Field(default="")
    full_transcript: str = Field(default="")
    items: list[GradingItem] = Field(default_factory=list)
    total_score: float = Field(default=0.0)
    max_total_score: float = Field(default=0.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percentage(self) -> float:
        """Calculate overall percentage score."""
        if self.max_total_score == 0:
            return 0.0
        return float(Decimal(str(self.total_score)) / Decimal(str(self.max_total_score)) * 100)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def score_band(self) -> ScoreBand:
        if self.percentage >= 70:
            return ScoreBand.HIGH
        if self.percentage >= 50:
            return ScoreBand.MEDIUM
        return ScoreBand.LOW

    def questions(self) -> list[QuestionItem]:
        """Return the scored rows in exam order."""
        return [item for item in self.items if isinstance(item, QuestionItem)]


HEADER_FIELDS: frozenset[str] = frozenset(
    {"student_name", "institution", "class_name", "teacher_name", "exam_date", "full_transcript"}
)


# ==============================================================================
# Principal and Credit Models
# ==============================================================================


class Role(str, Enum):
    """Role of an authenticated principal."""

    STANDARD = "standard"
    PRIVILEGED = "privileged"  # never charged


class Principal(BaseModel):
    """Authenticated caller as reported by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    role: Role = Field(default=Role.STANDARD)
    remaining_quota: int = Field(default=0, ge=0)

    @property
    def is_privileged(self) -> bool:
        return self.role == Role.PRIVILEGED


class CreditPackage(BaseModel):
    """A purchasable bundle of submissions."""

    model_config = ConfigDict(frozen=True)

    label: str
    credits: int = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)
    popular: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price_per_credit(self) -> Decimal:
        return (self.price / self.credits).quantize(Decimal("0.0001"))


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(label="Basic", credits=100, price=Decimal("5.00")),
    CreditPackage(label="Popular", credits=500, price=Decimal("20.00"), popular=True),
    CreditPackage(label="Pro", credits=1000, price=Decimal("30.00")),
    CreditPackage(label="School", credits=5000, price=Decimal("125.00")),
)


# ==============================================================================
# Submission Models
# ==============================================================================


class ExamImage(BaseModel):
    """Raw exam image ready to be sent to the grading oracle."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., min_length=1)
    mime_type: str = Field(..., pattern=r"^image/[\w.+-]+$")
    source_name: str = Field(default="")


class SubmissionOutcome(BaseModel):
    """What a successful submission hands back to the presentation layer."""

    model_config = ConfigDict(frozen=True)

    result: SessionResult
    quota_committed: bool = Field(
        default=True,
        description="False when grading succeeded but the quota store could not be updated",
    )
