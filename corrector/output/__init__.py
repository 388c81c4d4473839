"""
Output Module.

Renders correction results as downloadable reports.
"""

from corrector.output.renderer import ReportFormat, ReportRenderer, report_filename

__all__ = [
    "ReportFormat",
    "ReportRenderer",
    "report_filename",
]
