"""Prompt templates for request/response analysis."""

from __future__ import annotations

__all__ = ["ANALYSIS_TEMPLATE", "format_analysis_prompt"]

ANALYSIS_TEMPLATE = """\
HTTP Request:
{request}

HTTP Response:
{response}

Question: {question}
"""


def format_analysis_prompt(request_text: str, response_text: str, question: str) -> str:
    """Embed an HTTP exchange and a question into a single user prompt."""

    return ANALYSIS_TEMPLATE.format(
        request=request_text or "",
        response=response_text or "",
        question=question or "",
    )
