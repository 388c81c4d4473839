"""
Response parser for LLM grading output.

Parses the JSON responses of the grading and re-evaluation calls and
converts them into session models. Missing optional header fields become
empty strings; anything that can't be turned into a usable result raises
MalformedResponse.
"""

import json
import math
import re
from typing import Any

from pydantic import ValidationError

from corrector.errors import MalformedResponse
from corrector.models import ContextItem, QuestionItem, SessionResult, Verdict, VerdictPatch

# Accepted spellings per field, first match wins
_HEADER_KEYS: dict[str, tuple[str, ...]] = {
    "student_name": ("student_name", "studentName"),
    "institution": ("institution", "school_name", "schoolName"),
    "class_name": ("class_name", "className"),
    "teacher_name": ("teacher_name", "teacherName"),
    "exam_date": ("exam_date", "examDate"),
    "summary": ("summary",),
    "full_transcript": ("full_transcript", "full_transcription", "fullTranscription"),
}
_ITEMS_KEYS = ("items", "questions")
_LABEL_KEYS = ("label", "number", "questionNumber")
_TEXT_KEYS = ("text", "questionText")
_CHOICES_KEYS = ("choices", "alternatives")
_ANSWER_KEYS = ("student_answer", "studentAnswer")
_CORRECT_KEYS = ("is_correct", "isCorrect")
_MAX_SCORE_KEYS = ("max_score", "maxScore")


def _pick(data: dict[str, Any], keys: tuple[str, ...], default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


class ResponseParser:
    """
    Parses and validates LLM oracle responses.

    Ensures:
    1. Response is valid JSON
    2. Items are well-formed and typed as context or question
    3. Scores are finite numbers
    """

    def parse_grading(self, response: str) -> SessionResult:
        """
        Parse a grading response into a SessionResult.

        Totals in the payload are ignored; the result model re-derives them.

        Raises:
            MalformedResponse: If parsing or validation fails.
        """
        data = self._load(response)

        raw_items = _pick(data, _ITEMS_KEYS)
        if raw_items is None:
            raise MalformedResponse("Missing required field: items", raw_response=response)
        if not isinstance(raw_items, list):
            raise MalformedResponse("items must be a list", raw_response=response)

        items = [self._parse_item(raw, i, response) for i, raw in enumerate(raw_items)]
        header = {field: str(_pick(data, keys, "")) for field, keys in _HEADER_KEYS.items()}

        try:
            return SessionResult(items=items, **header)
        except ValidationError as e:
            raise MalformedResponse(f"Invalid grading result: {e}", raw_response=response) from e

    def parse_verdict(self, response: str) -> VerdictPatch:
        """
        Parse a re-evaluation response.

        Raises:
            MalformedResponse: If a field is missing or invalid.
        """
        data = self._load(response)

        for keys, name in ((_CORRECT_KEYS, "is_correct"), (("score",), "score"), (("feedback",), "feedback")):
            if _pick(data, keys) is None:
                raise MalformedResponse(f"Missing required field: {name}", raw_response=response)

        return VerdictPatch(
            is_correct=self._parse_bool(_pick(data, _CORRECT_KEYS), "is_correct", response),
            score=self._parse_number(data["score"], "score", response),
            feedback=str(data["feedback"]),
        )

    def parse_summary(self, response: str) -> str:
        """Strip a summary response down to its text."""
        text = response.strip()
        fenced = re.fullmatch(r"```(?:\w+)?\s*([\s\S]*?)```", text)
        if fenced:
            text = fenced.group(1).strip()
        return text

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, response: str) -> dict[str, Any]:
        json_str = self._extract_json(response)
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"Invalid JSON in response: {e}", raw_response=response) from e
        if not isinstance(data, dict):
            raise MalformedResponse("Response JSON must be an object", raw_response=response)
        return data

    def _extract_json(self, response: str) -> str:
        """
        Extract JSON from response, handling common formats.

        Args:
            response: Raw response text.

        Returns:
            Extracted JSON string.
        """
        # Remove markdown code block if present
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
        if json_match:
            return json_match.group(1).strip()

        brace_start = response.find("{")
        if brace_start == -1:
            raise MalformedResponse("No JSON object found in response", raw_response=response)

        # Find matching closing brace, ignoring braces inside strings
        depth = 0
        in_string = False
        escaped = False
        for i, char in enumerate(response[brace_start:], start=brace_start):
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return response[brace_start : i + 1]

        raise MalformedResponse("Unclosed JSON object in response", raw_response=response)

    def _parse_item(self, raw: Any, index: int, response: str) -> ContextItem | QuestionItem:
        if not isinstance(raw, dict):
            raise MalformedResponse(f"items[{index}] must be an object", raw_response=response)

        kind = str(raw.get("type") or raw.get("kind") or "question").lower()
        label = str(_pick(raw, _LABEL_KEYS, ""))
        text = str(_pick(raw, _TEXT_KEYS, ""))

        if kind == "context":
            return ContextItem(sequence_index=index, label=label, text=text)
        if kind != "question":
            raise MalformedResponse(f"items[{index}] has unknown type '{kind}'", raw_response=response)

        choices = _pick(raw, _CHOICES_KEYS, [])
        if not isinstance(choices, list):
            raise MalformedResponse(f"items[{index}].choices must be a list", raw_response=response)

        return QuestionItem(
            sequence_index=index,
            label=label,
            text=text,
            choices=[str(c) for c in choices],
            student_answer=str(_pick(raw, _ANSWER_KEYS, "")),
            verdict=Verdict(
                is_correct=self._parse_bool(_pick(raw, _CORRECT_KEYS, False), f"items[{index}].is_correct", response),
                score=self._parse_number(raw.get("score", 0), f"items[{index}].score", response),
                max_score=self._parse_number(_pick(raw, _MAX_SCORE_KEYS, 0), f"items[{index}].max_score", response),
            ),
            feedback=str(raw.get("feedback") or ""),
        )

    def _parse_number(self, value: Any, field_name: str, raw_response: str) -> float:
        """
        Parse a value as a finite float.

        Raises:
            MalformedResponse: If parsing fails.
        """
        if value is None:
            return 0.0
        if isinstance(value, bool):
            raise MalformedResponse(f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response)
        try:
            number = float(str(value).replace(",", ".")) if isinstance(value, str) else float(value)
        except (TypeError, ValueError) as e:
            raise MalformedResponse(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            ) from e
        if not math.isfinite(number):
            raise MalformedResponse(f"Non-finite value for {field_name}: {value}", raw_response=raw_response)
        return number

    def _parse_bool(self, value: Any, field_name: str, raw_response: str) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        raise MalformedResponse(f"Invalid boolean value for {field_name}: {value}", raw_response=raw_response)
