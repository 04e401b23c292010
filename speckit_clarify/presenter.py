"""Question rendering and answer validation.

Every question is either multiple choice (2-5 options, rendered as an
``Option | Description`` table) or a short answer bounded to five words.
"""

from __future__ import annotations

import re
from typing import List, Optional

from .errors import AnswerValidationError
from .models import (
    MAX_OPTIONS,
    MIN_OPTIONS,
    SHORT_ANSWER_MAX_WORDS,
    CandidateQuestion,
    CompletionReport,
)

STOP_SIGNALS = frozenset({"stop", "done", "proceed", "no more", "skip all", "quit", "exit", "that's all"})
SHORT_FORMAT_NOTE = f"Format: Short answer (<={SHORT_ANSWER_MAX_WORDS} words)"

_LETTER_RE = re.compile(r"^(?:option\s+)?([A-Ea-e])[.):]?$", re.IGNORECASE)
_MULTI_LETTER_RE = re.compile(r"^[A-Ea-e](?:\s*(?:,|/|&|\bor\b|\band\b)\s*[A-Ea-e])+$", re.IGNORECASE)


def is_stop_signal(raw: Optional[str]) -> bool:
    if raw is None:
        return False
    normalized = " ".join(raw.strip().strip(".!").lower().split())
    return normalized in STOP_SIGNALS


def word_count(text: str) -> int:
    return len(text.split())


def render_question(question: CandidateQuestion, number: Optional[int] = None) -> str:
    """Render one question for the person answering it."""
    if question.options and not MIN_OPTIONS <= len(question.options) <= MAX_OPTIONS:
        raise ValueError(f"Question '{question.text}' has {len(question.options)} options; 2-5 are required")

    lines: List[str] = []
    header = f"**Question {number}**" if number is not None else "**Question**"
    lines.append(f"{header} ({question.category})")
    if question.context:
        lines.append("")
        lines.append(question.context)
    lines.append("")
    lines.append(question.text)
    lines.append("")

    if question.is_multiple_choice:
        lines.append("| Option | Description |")
        lines.append("|--------|-------------|")
        for option in question.options:
            lines.append(f"| {option.label} | {option.description} |")
        if question.allows_short:
            lines.append(f"| Short | Provide a different short answer (<={SHORT_ANSWER_MAX_WORDS} words) |")
        lines.append("")
        letters = ", ".join(option.label for option in question.options)
        if question.allows_short:
            lines.append(f"Reply with one option letter ({letters}) or a short answer.")
        else:
            lines.append(f"Reply with one option letter ({letters}).")
    else:
        lines.append(SHORT_FORMAT_NOTE)

    return "\n".join(lines)


def parse_answer(question: CandidateQuestion, raw: Optional[str]) -> str:
    """Validate a reply and return the answer text to record.

    Option letters resolve to the option description. Raises
    ``AnswerValidationError`` when the reply is empty, names several options,
    or exceeds the short-answer word bound.
    """
    answer = (raw or "").strip().strip("\"'").strip()
    if not answer:
        raise AnswerValidationError("Empty answer.")

    if question.is_multiple_choice:
        letter = _LETTER_RE.match(answer)
        if letter:
            option = question.option(letter.group(1))
            if option is None:
                raise AnswerValidationError(f"'{answer}' is not one of the listed options.")
            return option.description
        if _MULTI_LETTER_RE.match(answer):
            raise AnswerValidationError(f"'{answer}' names more than one option; choose exactly one.")
        for option in question.options:
            if answer.lower() == option.description.lower():
                return option.description
        if not question.allows_short:
            letters = ", ".join(option.label for option in question.options)
            raise AnswerValidationError(f"Choose one of the listed options ({letters}).")

    if word_count(answer) > SHORT_ANSWER_MAX_WORDS:
        raise AnswerValidationError(
            f"Short answers are limited to {SHORT_ANSWER_MAX_WORDS} words; got {word_count(answer)}."
        )
    return " ".join(answer.split())


def render_report(report: CompletionReport) -> str:
    """Render the completion report as markdown."""
    lines = [
        "## Clarification Summary",
        "",
        f"- Questions asked: {report.questions_asked}",
        f"- Questions answered: {report.questions_answered}",
    ]
    if report.spec_path:
        lines.append(f"- Updated spec: {report.spec_path}")
    if report.modified_sections:
        lines.append(f"- Sections touched: {', '.join(report.modified_sections)}")
    else:
        lines.append("- Sections touched: none")

    lines.extend(["", "| Category | Initial | Status |", "|----------|---------|--------|"])
    for row in report.coverage_table():
        status = "Resolved" if row["resolved"] else row["status"]
        lines.append(f"| {row['category']} | {row['initial_status']} | {status} |")

    deferred = report.deferred_categories
    if deferred:
        lines.extend(["", f"Deferred: {', '.join(deferred)}"])

    lines.extend(["", f"Recommendation: {report.recommendation}"])
    return "\n".join(lines)
