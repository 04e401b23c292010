"""Integration of accepted answers into the spec.

``ClarificationEditor`` owns the question/answer state machine::

    Idle -> AwaitingAnswer -> Validating -> Integrating -> Persisted -> Idle | Terminated

A failed write leaves the editor in ``Failed`` until ``reload()`` re-reads
the spec from disk.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .document import BULLET_RE, SpecDocument
from .errors import (
    AnswerValidationError,
    DocumentStructureError,
    PersistenceError,
    SessionStateError,
)
from .models import CandidateQuestion, ClarificationRecord
from .presenter import parse_answer
from .speckit_logging import (
    log_answer_accepted,
    log_error_with_context,
    log_performance,
    log_spec_persisted,
)

logger = logging.getLogger("speckit.clarify.editor")

STATE_IDLE = "Idle"
STATE_AWAITING_ANSWER = "AwaitingAnswer"
STATE_VALIDATING = "Validating"
STATE_INTEGRATING = "Integrating"
STATE_PERSISTED = "Persisted"
STATE_TERMINATED = "Terminated"
STATE_FAILED = "Failed"

CLARIFICATIONS_SECTION = "Clarifications"


@dataclass(slots=True)
class EditResult:
    """Outcome of one accepted answer."""

    record: ClarificationRecord
    sections: List[str] = field(default_factory=list)
    superseded: Optional[str] = None
    renamed_lines: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record": self.record.to_dict(),
            "sections": list(self.sections),
            "superseded": self.superseded,
            "renamed_lines": self.renamed_lines,
        }


def apply_clarification(
    document: SpecDocument,
    question: CandidateQuestion,
    answer: str,
    session_date: str,
) -> Tuple[SpecDocument, EditResult]:
    """Compute the snapshot that results from accepting ``answer``.

    Pure: the input snapshot is left untouched. Raises
    ``DocumentStructureError`` if the edit would introduce a heading problem.
    """
    updated = document
    sections: List[str] = []
    superseded: Optional[str] = None
    renamed = 0
    recorded_answer = answer

    if question.is_terminology:
        old_terms = [term for term in question.rename_terms if term.lower() != answer.lower()]
        changed: List[int] = []
        for term in old_terms:
            updated, lines = updated.rename_term(term, answer)
            changed.extend(lines)
        renamed = len(set(changed))
        sections.extend(updated.section_titles_for(sorted(set(changed))))
        if old_terms:
            formerly = ", ".join(f'"{term.title()}"' for term in old_terms)
            recorded_answer = f"{answer} (formerly {formerly})"
        glossary = updated.find_sections(question.target_sections)
        if glossary:
            updated = updated.append_to_section(glossary[0], ["- " + question.statement.format(answer=answer)])
            if glossary[0].title not in sections:
                sections.append(glossary[0].title)
    else:
        new_statement = question.statement.format(answer=answer)
        index = updated.index_of(question.superseded_line) if question.superseded_line else None
        if index is not None:
            old_line = updated.lines[index]
            # same list marker as the line it replaces
            marker = BULLET_RE.match(old_line)
            prefix = marker.group(0) if marker else old_line[: len(old_line) - len(old_line.lstrip())]
            owner = updated.section_for_line(index)
            updated = updated.replace_line(index, prefix + new_statement)
            superseded = old_line
            sections.append(owner.title if owner else "(preamble)")
        else:
            targets = updated.find_sections(question.target_sections) if question.target_sections else []
            if targets:
                updated = updated.append_to_section(targets[0], [f"- {new_statement}"])
                sections.append(targets[0].title)

    record = ClarificationRecord(question.text, recorded_answer, session_date)
    updated = updated.add_clarification(record)
    if CLARIFICATIONS_SECTION not in sections:
        sections.insert(0, CLARIFICATIONS_SECTION)

    problems = updated.new_heading_problems(document)
    if problems:
        raise DocumentStructureError(f"Edit would break the heading hierarchy: {'; '.join(problems)}")

    return updated, EditResult(record, sections, superseded, renamed)


def atomic_write_text(path: Path, data: str) -> None:
    """Replace ``path`` with ``data`` so readers never see a partial file."""
    target = Path(path)
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class ClarificationEditor:
    """Hold the current spec snapshot and fold accepted answers into it."""

    def __init__(
        self,
        spec_path: Path,
        document: SpecDocument,
        *,
        session_date: Optional[str] = None,
        feature_dir: Optional[Path] = None,
    ):
        self.spec_path = Path(spec_path)
        self.feature_dir = Path(feature_dir) if feature_dir else self.spec_path.parent
        self.document = document
        self.session_date = session_date or date.today().isoformat()
        self.state = STATE_IDLE
        self.pending: Optional[CandidateQuestion] = None
        self.records: List[ClarificationRecord] = []

    def ask(self, question: CandidateQuestion) -> None:
        """Mark ``question`` as the single outstanding question."""
        if self.state not in (STATE_IDLE, STATE_PERSISTED):
            raise SessionStateError(f"Cannot ask a new question while the editor is {self.state}.")
        self.pending = question
        self.state = STATE_AWAITING_ANSWER

    @log_performance("integrate_answer")
    def submit(self, raw_answer: str) -> EditResult:
        """Validate, integrate and persist an answer to the pending question."""
        if self.state != STATE_AWAITING_ANSWER or self.pending is None:
            raise SessionStateError(f"No question is awaiting an answer (editor is {self.state}).")
        question = self.pending

        self.state = STATE_VALIDATING
        try:
            answer = parse_answer(question, raw_answer)
        except AnswerValidationError:
            self.state = STATE_AWAITING_ANSWER
            raise

        self.state = STATE_INTEGRATING
        try:
            updated, result = apply_clarification(self.document, question, answer, self.session_date)
        except DocumentStructureError as e:
            logger.warning(f"Rejected answer for {question.category}: {e}")
            self.state = STATE_AWAITING_ANSWER
            raise

        self.persist(updated)

        self.records.append(result.record)
        self.pending = None
        log_answer_accepted(str(self.feature_dir), question.category, result.sections)
        return result

    def persist(self, document: SpecDocument) -> None:
        """Atomically write ``document`` and adopt it as the current snapshot."""
        try:
            atomic_write_text(self.spec_path, document.text)
        except OSError as e:
            self.state = STATE_FAILED
            self.pending = None
            log_error_with_context(e, {"operation": "persist_spec", "spec_path": str(self.spec_path)})
            raise PersistenceError(
                f"Could not write {self.spec_path}: {e}. The spec state is unknown; reload before continuing."
            ) from e

        self.document = document
        self.state = STATE_PERSISTED
        log_spec_persisted(str(self.feature_dir), str(self.spec_path), bytes=len(document.text))

    def reload(self) -> SpecDocument:
        """Re-read the spec from disk after a failed write."""
        self.document = SpecDocument.load(self.spec_path)
        self.pending = None
        self.state = STATE_IDLE
        logger.info(f"Reloaded spec from {self.spec_path}")
        return self.document

    def terminate(self) -> None:
        self.pending = None
        self.state = STATE_TERMINATED
