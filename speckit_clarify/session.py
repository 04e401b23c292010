"""One clarification run over a single feature spec."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Set

from .config import ClarifyConfig
from .document import SpecDocument
from .editor import ClarificationEditor, EditResult
from .errors import AnswerValidationError, DocumentStructureError, PersistenceError, SessionStateError
from .locator import SpecLocator
from .models import (
    RECOMMEND_ANOTHER_PASS,
    RECOMMEND_NO_AMBIGUITIES,
    RECOMMEND_PLAN,
    CandidateQuestion,
    CompletionReport,
    CoverageEntry,
    FeaturePaths,
)
from .presenter import is_stop_signal, render_question, render_report
from .scanner import AmbiguityScanner
from .speckit_logging import log_operation, log_question_asked, log_session_terminated

logger = logging.getLogger("speckit.clarify.session")

REASON_USER_STOP = "user_stop"
REASON_QUESTION_LIMIT = "question_limit"
REASON_NO_AMBIGUITIES = "no_ambiguities"
REASON_COVERAGE_RESOLVED = "coverage_resolved"
REASON_WRITE_FAILED = "write_failed"


class ClarificationSession:
    """Drive SpecLocator -> AmbiguityScanner -> Q&A -> ClarificationEditor."""

    def __init__(
        self,
        config: ClarifyConfig,
        *,
        locator: Optional[SpecLocator] = None,
        scanner: Optional[AmbiguityScanner] = None,
        session_date: Optional[str] = None,
    ):
        self.config = config
        self.locator = locator or SpecLocator(config.project_root, config.prereq_script)
        self.scanner = scanner or AmbiguityScanner()
        self.session_date = session_date

        self.paths: Optional[FeaturePaths] = None
        self.editor: Optional[ClarificationEditor] = None
        self.initial_coverage: List[CoverageEntry] = []
        self.current: Optional[CandidateQuestion] = None
        self.asked_categories: Set[str] = set()
        self.resolved_categories: List[str] = []
        self.modified_sections: List[str] = []
        self.questions_asked = 0
        self.questions_answered = 0
        self.terminated = False
        self.termination_reason = ""

    @property
    def document(self) -> SpecDocument:
        if self.editor is None:
            raise SessionStateError("Session has not been started.")
        return self.editor.document

    @property
    def feature_key(self) -> str:
        return str(self.paths.feature_dir) if self.paths else ""

    def start(self) -> List[CoverageEntry]:
        """Locate and load the spec, then record the initial coverage."""
        with log_operation("start_clarification", root=str(self.config.project_root)):
            self.paths = self.locator.locate()
            document = self.locator.load_spec(self.paths)
            self.editor = ClarificationEditor(
                self.paths.spec_path,
                document,
                session_date=self.session_date,
                feature_dir=self.paths.feature_dir,
            )
            self.initial_coverage = self.scanner.scan(document)
        return list(self.initial_coverage)

    def coverage(self) -> List[CoverageEntry]:
        return self.scanner.scan(self.document)

    def next_question(self) -> Optional[CandidateQuestion]:
        """Issue the highest-priority question, or end the session."""
        if self.terminated:
            return None
        if self.current is not None:
            return self.current
        if self.questions_asked >= self.config.max_questions:
            self.stop(REASON_QUESTION_LIMIT)
            return None

        question = self.scanner.top_question(self.document, exclude=self.asked_categories)
        if question is None:
            self.stop(REASON_NO_AMBIGUITIES if self.questions_asked == 0 else REASON_COVERAGE_RESOLVED)
            return None

        self.editor.ask(question)
        self.current = question
        self.questions_asked += 1
        self.asked_categories.add(question.category)
        log_question_asked(self.feature_key, question.category, question.score, number=self.questions_asked)
        return question

    def answer(self, raw: str) -> Optional[EditResult]:
        """Apply a reply to the outstanding question; stop signals end the session."""
        if is_stop_signal(raw):
            self.stop(REASON_USER_STOP)
            return None
        if self.terminated:
            raise SessionStateError("Clarification session has already ended.")
        if self.current is None:
            raise SessionStateError("No question is outstanding.")

        question = self.current
        try:
            result = self.editor.submit(raw)
        except PersistenceError:
            # the editor refuses new questions until reload()
            self.current = None
            raise

        self.current = None
        self.questions_answered += 1
        if question.category not in self.resolved_categories:
            self.resolved_categories.append(question.category)
        for title in result.sections:
            if title not in self.modified_sections:
                self.modified_sections.append(title)
        return result

    def reload(self) -> SpecDocument:
        """Re-read the spec after a failed write."""
        self.current = None
        return self.editor.reload()

    def stop(self, reason: str = REASON_USER_STOP) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.termination_reason = reason
        self.current = None
        if self.editor is not None:
            self.editor.terminate()
        log_session_terminated(
            self.feature_key,
            reason,
            questions_asked=self.questions_asked,
            questions_answered=self.questions_answered,
        )

    def report(self) -> CompletionReport:
        """Summarize the session against a fresh scan."""
        coverage = self.scanner.scan(self.document) if self.editor else []
        report = CompletionReport(
            questions_asked=self.questions_asked,
            questions_answered=self.questions_answered,
            spec_path=self.paths.spec_path if self.paths else None,
            modified_sections=list(self.modified_sections),
            initial_coverage=list(self.initial_coverage),
            coverage=coverage,
            resolved_categories=list(self.resolved_categories),
            termination_reason=self.termination_reason,
        )
        if self.questions_asked == 0:
            report.recommendation = RECOMMEND_NO_AMBIGUITIES
        elif report.deferred_categories:
            report.recommendation = RECOMMEND_ANOTHER_PASS
        else:
            report.recommendation = RECOMMEND_PLAN
        return report

    def run_interactive(
        self,
        ask: Callable[[str], str],
        emit: Callable[[str], None] = print,
    ) -> CompletionReport:
        """Run the loop against a prompt function such as ``input``."""
        if self.editor is None:
            self.start()

        while not self.terminated:
            question = self.next_question()
            if question is None:
                break
            emit(render_question(question, number=self.questions_asked))
            while True:
                try:
                    reply = ask("> ")
                except (EOFError, KeyboardInterrupt):
                    self.stop(REASON_USER_STOP)
                    break
                try:
                    self.answer(reply)
                except (AnswerValidationError, DocumentStructureError) as e:
                    emit(f"{e} {e.suggestion}")
                    continue
                except PersistenceError as e:
                    emit(f"{e} {e.suggestion}")
                    self.stop(REASON_WRITE_FAILED)
                break

        report = self.report()
        emit(render_report(report))
        return report
