"""
Report renderer.

Turns a correction result into a downloadable document. Rendering is
stateless and idempotent: the same result always produces the same report.

- PDF through PyMuPDF
- DOCX through python-docx
- JSON through the pydantic model
"""

import io
import re
from datetime import date
from enum import Enum

import fitz  # PyMuPDF
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

from corrector.models import ContextItem, QuestionItem, ScoreBand, SessionResult

REPORT_TITLE = "Correction Report"
NO_ANSWER = "(no answer)"

# Hex colours shared by both document formats
COLOR_TITLE = "4f46e5"
COLOR_TEXT = "000000"
COLOR_MUTED = "64748b"
COLOR_SUMMARY = "475569"
COLOR_FEEDBACK = "334155"
COLOR_CORRECT = "16a34a"
COLOR_PARTIAL = "ca8a04"
COLOR_WRONG = "dc2626"


class ReportFormat(str, Enum):
    """Supported report formats."""

    PDF = "pdf"
    DOCX = "docx"
    JSON = "json"


def report_filename(result: SessionResult, fmt: ReportFormat, on: date | None = None) -> str:
    """Build the download name: correction_<student>_<YYYY-MM-DD>.<ext>."""
    student = re.sub(r"[^a-z0-9]", "_", (result.student_name or "student").lower())
    day = (on or date.today()).isoformat()
    return f"correction_{student}_{day}.{fmt.value}"


def question_color(item: QuestionItem) -> str:
    """Green when correct, amber for partial credit, red otherwise."""
    if item.verdict.is_correct:
        return COLOR_CORRECT
    if item.verdict.score > 0:
        return COLOR_PARTIAL
    return COLOR_WRONG


def _score_color(result: SessionResult) -> str:
    return COLOR_CORRECT if result.score_band is ScoreBand.HIGH else COLOR_WRONG


def _header_lines(result: SessionResult) -> list[tuple[str, str]]:
    lines = [("Student", result.student_name or "Unidentified")]
    for label, value in (
        ("School", result.institution),
        ("Class", result.class_name),
        ("Teacher", result.teacher_name),
        ("Date", result.exam_date),
    ):
        if value:
            lines.append((label, value))
    return lines


def _fmt_points(value: float) -> str:
    return f"{value:g}"


class ReportRenderer:
    """Renders correction results as PDF, DOCX or JSON documents."""

    def render(self, result: SessionResult, fmt: ReportFormat) -> bytes:
        """
        Render a result.

        Args:
            result: The correction result to render.
            fmt: Output format.

        Returns:
            The document as bytes.
        """
        if fmt is ReportFormat.PDF:
            return self._render_pdf(result)
        if fmt is ReportFormat.DOCX:
            return self._render_docx(result)
        return result.model_dump_json(indent=2).encode("utf-8")

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def _render_pdf(self, result: SessionResult) -> bytes:
        with fitz.open() as doc:
            writer = _PdfWriter(doc)
            writer.text(REPORT_TITLE, size=18, bold=True, color=COLOR_TITLE)
            writer.space(5)

            for label, value in _header_lines(result):
                writer.text(f"{label}: {value}", size=12 if label == "Student" else 10, bold=label == "Student")

            writer.space(5)
            writer.text(
                f"Final score: {_fmt_points(result.total_score)} / {_fmt_points(result.max_total_score)}",
                size=14,
                bold=True,
                color=_score_color(result),
            )
            writer.space(10)

            writer.text("Analysis summary", size=12, bold=True)
            writer.text(result.summary, size=10, italic=True, color=COLOR_SUMMARY)
            writer.space(10)
            writer.rule()

            for item in result.items:
                if isinstance(item, ContextItem):
                    writer.text(
                        f"Context: {item.label}" if item.label else "Supporting text",
                        size=10,
                        bold=True,
                        color=COLOR_MUTED,
                    )
                    writer.text(item.text, size=9, italic=True, color=COLOR_MUTED)
                    writer.space(5)
                    continue

                color = question_color(item)
                status = "(Correct)" if item.verdict.is_correct else "(Incorrect/Partial)"
                writer.text(f"Question {item.label} {status}", size=11, bold=True, color=color)
                writer.text(
                    f"Score: {_fmt_points(item.verdict.score)} / {_fmt_points(item.verdict.max_score)} pts",
                    size=10,
                    bold=True,
                    color=color,
                )
                writer.space(2)
                writer.text("Statement:", size=9, bold=True)
                writer.text(item.text, size=9)
                if item.choices:
                    for choice in item.choices:
                        writer.text(f"  - {choice}", size=9)
                writer.space(2)
                writer.text("Student answer:", size=9, bold=True)
                writer.text(item.student_answer or NO_ANSWER, size=9, italic=True)
                writer.space(2)
                writer.text("Feedback:", size=9, bold=True)
                writer.text(item.feedback, size=9, color=COLOR_FEEDBACK)
                writer.space(8)
                writer.rule()

            return doc.tobytes()

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    def _render_docx(self, result: SessionResult) -> bytes:
        doc = Document()

        title = doc.add_heading(REPORT_TITLE, level=1)
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER

        for label, value in _header_lines(result):
            para = doc.add_paragraph()
            para.add_run(f"{label}: ").bold = True
            para.add_run(value)

        score = doc.add_paragraph()
        run = score.add_run("Final score: ")
        run.bold = True
        run.font.size = Pt(14)
        run = score.add_run(
            f"{_fmt_points(result.total_score)} / {_fmt_points(result.max_total_score)}"
        )
        run.bold = True
        run.font.size = Pt(14)
        run.font.color.rgb = RGBColor.from_string(_score_color(result).upper())

        doc.add_heading("Analysis summary", level=2)
        doc.add_paragraph().add_run(result.summary).italic = True

        for item in result.items:
            if isinstance(item, ContextItem):
                run = doc.add_paragraph().add_run(
                    f"Context {item.label}" if item.label else "Supporting text"
                )
                run.bold = True
                run.font.color.rgb = RGBColor.from_string(COLOR_MUTED.upper())
                run = doc.add_paragraph().add_run(item.text)
                run.italic = True
                run.font.color.rgb = RGBColor.from_string(COLOR_MUTED.upper())
                continue

            run = doc.add_paragraph().add_run(
                f"Question {item.label} - ({_fmt_points(item.verdict.score)}"
                f"/{_fmt_points(item.verdict.max_score)} pts)"
            )
            run.bold = True
            run.font.size = Pt(12)
            run.font.color.rgb = RGBColor.from_string(question_color(item).upper())

            doc.add_paragraph().add_run("Statement:").bold = True
            doc.add_paragraph(item.text)
            for choice in item.choices:
                doc.add_paragraph(choice, style="List Bullet")
            doc.add_paragraph().add_run("Student answer:").bold = True
            doc.add_paragraph().add_run(item.student_answer or NO_ANSWER).italic = True
            doc.add_paragraph().add_run("Feedback:").bold = True
            doc.add_paragraph(item.feedback)

        buffer = io.BytesIO()
        doc.save(buffer)
        return buffer.getvalue()


class _PdfWriter:
    """Flows wrapped lines of text down A4 pages, adding pages as needed."""

    PAGE_WIDTH = 595
    PAGE_HEIGHT = 842
    MARGIN = 50

    def __init__(self, doc: fitz.Document):
        self._doc = doc
        self._page = doc.new_page(width=self.PAGE_WIDTH, height=self.PAGE_HEIGHT)
        self._y = self.MARGIN

    @property
    def _content_width(self) -> float:
        return self.PAGE_WIDTH - 2 * self.MARGIN

    def text(
        self,
        text: str,
        size: float = 10,
        bold: bool = False,
        italic: bool = False,
        color: str = COLOR_TEXT,
    ) -> None:
        fontname = "hebo" if bold else "heit" if italic else "helv"
        line_height = size * 1.4
        rgb = tuple(int(color[i : i + 2], 16) / 255 for i in (0, 2, 4))
        for line in self._wrap(text, fontname, size):
            self._ensure_room(line_height)
            self._y += line_height
            self._page.insert_text(
                (self.MARGIN, self._y), line, fontname=fontname, fontsize=size, color=rgb
            )
        self._y += 2

    def space(self, amount: float) -> None:
        self._y += amount

    def rule(self) -> None:
        self._ensure_room(10)
        self._page.draw_line(
            (self.MARGIN, self._y),
            (self.PAGE_WIDTH - self.MARGIN, self._y),
            color=(0.85, 0.85, 0.85),
        )
        self._y += 10

    def _ensure_room(self, height: float) -> None:
        if self._y + height > self.PAGE_HEIGHT - self.MARGIN:
            self._page = self._doc.new_page(width=self.PAGE_WIDTH, height=self.PAGE_HEIGHT)
            self._y = self.MARGIN

    def _wrap(self, text: str, fontname: str, size: float) -> list[str]:
        lines: list[str] = []
        for paragraph in (text or "").splitlines() or [""]:
            current = ""
            for word in paragraph.split(" "):
                candidate = f"{current} {word}" if current else word
                if fitz.get_text_length(candidate, fontname=fontname, fontsize=size) <= self._content_width:
                    current = candidate
                    continue
                if current:
                    lines.append(current)
                current = word
            lines.append(current)
        return lines
