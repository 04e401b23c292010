"""Data models for the Speck-It clarification loop.

This module contains the value types shared by the locator, scanner,
presenter, editor and session: discovered feature paths, coverage
results, candidate questions, clarification records and the completion
report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

STATUS_CLEAR = "Clear"
STATUS_PARTIAL = "Partial"
STATUS_MISSING = "Missing"
COVERAGE_STATUSES = (STATUS_CLEAR, STATUS_PARTIAL, STATUS_MISSING)

OPTION_LABELS = ("A", "B", "C", "D", "E")
MIN_OPTIONS = 2
MAX_OPTIONS = 5
SHORT_ANSWER_MAX_WORDS = 5

RECOMMEND_NO_AMBIGUITIES = "No critical ambiguities detected worth formal clarification. Proceed to /plan."
RECOMMEND_ANOTHER_PASS = "Outstanding ambiguities remain. Run /clarify again before /plan."
RECOMMEND_PLAN = "Coverage is sufficient. Proceed to /plan."


@dataclass(slots=True)
class FeaturePaths:
    """Filesystem pointers returned by the prerequisite discovery step."""

    feature_dir: Path
    spec_path: Path
    plan_path: Optional[Path] = None
    tasks_path: Optional[Path] = None
    branch: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        """Convert to dictionary representation."""
        return {
            "feature_dir": str(self.feature_dir),
            "spec_path": str(self.spec_path),
            "plan_path": str(self.plan_path) if self.plan_path else None,
            "tasks_path": str(self.tasks_path) if self.tasks_path else None,
            "branch": self.branch,
        }


@dataclass(slots=True, frozen=True)
class CoverageEntry:
    """Coverage status of one taxonomy category."""

    category: str
    status: str
    evidence: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "category": self.category,
            "status": self.status,
            "evidence": list(self.evidence),
        }

    @property
    def needs_clarification(self) -> bool:
        return self.status != STATUS_CLEAR


@dataclass(slots=True, frozen=True)
class QuestionOption:
    """One mutually exclusive choice of a multiple-choice question."""

    label: str
    description: str


@dataclass(slots=True, frozen=True)
class CandidateQuestion:
    """A clarification question derived from a Partial or Missing category."""

    category: str
    text: str
    impact: int
    uncertainty: int
    options: Tuple[QuestionOption, ...] = ()
    allows_short: bool = False
    context: str = ""
    target_sections: Tuple[str, ...] = ()
    statement: str = "{answer}"
    superseded_line: Optional[str] = None
    rename_terms: Tuple[str, ...] = ()

    @property
    def score(self) -> int:
        return self.impact * self.uncertainty

    @property
    def is_multiple_choice(self) -> bool:
        return bool(self.options)

    @property
    def is_terminology(self) -> bool:
        return bool(self.rename_terms)

    def option(self, label: str) -> Optional[QuestionOption]:
        """Look up an option by its letter."""
        for item in self.options:
            if item.label == label.upper():
                return item
        return None

    def validate(self) -> List[str]:
        """Validate the question format and return any issues."""
        issues = []

        if not self.text:
            issues.append("Question text is required")
        if not 1 <= self.impact <= 5:
            issues.append(f"Impact must be 1-5, got: {self.impact}")
        if not 1 <= self.uncertainty <= 5:
            issues.append(f"Uncertainty must be 1-5, got: {self.uncertainty}")
        if self.options:
            if not MIN_OPTIONS <= len(self.options) <= MAX_OPTIONS:
                issues.append(f"Multiple-choice questions need 2-5 options, got: {len(self.options)}")
            descriptions = [item.description.strip().lower() for item in self.options]
            if len(set(descriptions)) != len(descriptions):
                issues.append("Options must be mutually exclusive")
            labels = [item.label for item in self.options]
            if labels != list(OPTION_LABELS[: len(labels)]):
                issues.append(f"Options must be labelled A-E in order, got: {labels}")
        elif not self.allows_short:
            issues.append("Question must offer options or accept a short answer")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "category": self.category,
            "text": self.text,
            "impact": self.impact,
            "uncertainty": self.uncertainty,
            "score": self.score,
            "options": [{"label": o.label, "description": o.description} for o in self.options],
            "allows_short": self.allows_short,
            "context": self.context,
        }


@dataclass(slots=True, frozen=True)
class ClarificationRecord:
    """An accepted question/answer pair."""

    question: str
    answer: str
    session_date: str

    def render(self) -> str:
        """Render the bullet recorded under the session heading."""
        return f"- Q: {self.question} → A: {self.answer}"

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {
            "question": self.question,
            "answer": self.answer,
            "session_date": self.session_date,
        }


@dataclass(slots=True)
class CompletionReport:
    """Summary emitted when a clarification session ends."""

    questions_asked: int
    questions_answered: int
    spec_path: Optional[Path]
    modified_sections: List[str] = field(default_factory=list)
    initial_coverage: List[CoverageEntry] = field(default_factory=list)
    coverage: List[CoverageEntry] = field(default_factory=list)
    resolved_categories: List[str] = field(default_factory=list)
    termination_reason: str = ""
    recommendation: str = ""

    @property
    def deferred_categories(self) -> List[str]:
        return [
            entry.category
            for entry in self.coverage
            if entry.needs_clarification and entry.category not in self.resolved_categories
        ]

    def coverage_table(self) -> List[Dict[str, Any]]:
        """Return category rows with initial and current status."""
        initial = {entry.category: entry.status for entry in self.initial_coverage}
        rows = []
        for entry in self.coverage:
            rows.append({
                "category": entry.category,
                "initial_status": initial.get(entry.category, entry.status),
                "status": entry.status,
                "resolved": entry.category in self.resolved_categories,
            })
        return rows

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "questions_asked": self.questions_asked,
            "questions_answered": self.questions_answered,
            "spec_path": str(self.spec_path) if self.spec_path else None,
            "modified_sections": list(self.modified_sections),
            "coverage": self.coverage_table(),
            "deferred_categories": self.deferred_categories,
            "termination_reason": self.termination_reason,
            "recommendation": self.recommendation,
        }
