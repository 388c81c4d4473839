"""
Corrector - exam correction session engine.

This package grades a scanned exam through an LLM grading oracle and keeps
an editable correction session consistent while the teacher adjusts scores,
re-evaluates individual questions and lets the summary refresh itself.
"""

__version__ = "1.0.0"
__author__ = "Corrector Team"
