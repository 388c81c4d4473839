"""
Grading oracle - the engine's view of the external grading service.

The session engine depends only on the GradingOracle protocol. LLMGradingOracle
implements it on top of an OpenAI-compatible vision model.
"""

import logging
from typing import Protocol, runtime_checkable

from corrector.config import Settings, get_settings
from corrector.errors import MalformedResponse
from corrector.grading.llm_client import LLMClient, image_content_part
from corrector.grading.prompt_builder import PromptBuilder
from corrector.grading.scorer import ResponseParser
from corrector.models import QuestionItem, SessionResult, VerdictPatch

logger = logging.getLogger(__name__)


@runtime_checkable
class GradingOracle(Protocol):
    """The three operations the session engine needs from a grader."""

    async def grade(self, image_bytes: bytes, mime_type: str, context: str) -> SessionResult: ...

    async def reevaluate(self, item: QuestionItem, context: str) -> VerdictPatch: ...

    async def summarize(self, result: SessionResult) -> str: ...


class LLMGradingOracle:
    """
    Grading oracle backed by an LLM.

    Every call is a single attempt from the engine's point of view; the
    client retries transient transport failures underneath.
    """

    def __init__(self, settings: Settings | None = None, llm_client: LLMClient | None = None):
        """
        Initialize the grading oracle.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            llm_client: LLM client to use. Built from settings if not provided.
        """
        self._settings = settings or get_settings()
        self._llm_client = llm_client or LLMClient(self._settings)
        self._prompt_builder = PromptBuilder(self._settings.feedback_language)
        self._response_parser = ResponseParser()

    async def grade(self, image_bytes: bytes, mime_type: str, context: str) -> SessionResult:
        """
        Grade a scanned exam.

        Raises:
            OracleUnavailable: If the LLM call fails.
            MalformedResponse: If the response can't be parsed.
        """
        user_content = [
            image_content_part(image_bytes, mime_type),
            {"type": "text", "text": self._prompt_builder.build_grading_prompt(context)},
        ]
        raw_response = await self._llm_client.generate(
            system_prompt=PromptBuilder.SYSTEM_PROMPT,
            user_content=user_content,
            temperature=self._settings.grading_temperature,
            json_mode=True,
        )
        result = self._response_parser.parse_grading(raw_response)
        if not result.items:
            raise MalformedResponse("Grading returned no items", raw_response=raw_response)
        logger.info("Graded exam with %d items", len(result.items))
        return result

    async def reevaluate(self, item: QuestionItem, context: str) -> VerdictPatch:
        """
        Re-judge one question from its current (edited) data.

        Raises:
            OracleUnavailable: If the LLM call fails.
            MalformedResponse: If the response can't be parsed.
        """
        raw_response = await self._llm_client.generate(
            system_prompt=PromptBuilder.SYSTEM_PROMPT,
            user_content=self._prompt_builder.build_reevaluation_prompt(item, context),
            temperature=self._settings.grading_temperature,
            json_mode=True,
        )
        return self._response_parser.parse_verdict(raw_response)

    async def summarize(self, result: SessionResult) -> str:
        """
        Rewrite the performance summary from the current scores.

        Raises:
            OracleUnavailable: If the LLM call fails.
        """
        raw_response = await self._llm_client.generate(
            system_prompt=PromptBuilder.SUMMARY_SYSTEM_PROMPT,
            user_content=self._prompt_builder.build_summary_prompt(result),
            temperature=self._settings.summary_temperature,
        )
        return self._response_parser.parse_summary(raw_response)

    async def health_check(self) -> bool:
        """
        Check if the grading oracle is operational.

        Returns:
            True if LLM API is reachable.
        """
        return await self._llm_client.health_check()
