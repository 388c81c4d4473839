"""
Grading Oracle Module.

LLM-backed implementation of the grading oracle: exam grading, single
question re-evaluation and summary regeneration.
"""

from corrector.grading.engine import GradingOracle, LLMGradingOracle
from corrector.grading.llm_client import LLMClient
from corrector.grading.prompt_builder import PromptBuilder
from corrector.grading.scorer import ResponseParser

__all__ = [
    "GradingOracle",
    "LLMClient",
    "LLMGradingOracle",
    "PromptBuilder",
    "ResponseParser",
]
