"""Workflow management for Speck-It Clarify.

This module exposes the clarification loop as plain-dict operations for the
MCP server. Fatal precondition failures come back as ``error`` dicts with a
suggestion and the next step to run, the way the other Speck-It tools report
them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import ROOT_SUGGESTION, ClarifyConfig
from .errors import (
    AnswerValidationError,
    ClarifyError,
    DocumentStructureError,
    LocatorError,
    PersistenceError,
    SessionStateError,
    SpecNotFoundError,
)
from .models import CandidateQuestion
from .presenter import render_question, render_report
from .session import ClarificationSession
from .speckit_logging import log_error_with_context

logger = logging.getLogger("speckit.clarify.workflow")


# Live sessions keyed by resolved feature directory
_SESSION_REGISTRY: Dict[str, ClarificationSession] = {}


def register_session(session: ClarificationSession) -> str:
    """Record a started session under its feature directory."""
    key = _session_key(session.feature_key)
    _SESSION_REGISTRY[key] = session
    return key


def lookup_session(feature_dir: str) -> Optional[ClarificationSession]:
    """Return the live session for a feature directory, if any."""
    return _SESSION_REGISTRY.get(_session_key(feature_dir))


def discard_session(feature_dir: str) -> None:
    _SESSION_REGISTRY.pop(_session_key(feature_dir), None)


def active_sessions() -> List[str]:
    return sorted(_SESSION_REGISTRY)


def _session_key(feature_dir: str) -> str:
    return str(Path(feature_dir).expanduser().resolve())


class ClarificationWorkflow:
    """Dict-returning facade over ``ClarificationSession``."""

    def __init__(
        self,
        config_factory: Callable[[Optional[str]], ClarifyConfig] = ClarifyConfig.from_env,
        session_factory: Callable[[ClarifyConfig], ClarificationSession] = ClarificationSession,
    ):
        self.config_factory = config_factory
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, root: Optional[str] = None) -> Dict[str, Any]:
        """Locate the active spec, scan it, and return the first question."""
        try:
            config = self.config_factory(root)
            session = self.session_factory(config)
            coverage = session.start()
        except (ClarifyError, ValueError) as e:
            return self._error_response(e, "start_clarification", root=root)

        key = register_session(session)
        question = session.next_question()
        response: Dict[str, Any] = {
            "feature_dir": session.feature_key,
            "session_key": key,
            "paths": session.paths.to_dict(),
            "coverage": [entry.to_dict() for entry in coverage],
        }
        if question is None:
            response.update(self._finish(session))
            return response

        response.update(self._question_payload(session, question))
        response["message"] = f"Clarification started for {session.paths.feature_dir.name}."
        return response

    def answer(self, feature_dir: str, answer: str) -> Dict[str, Any]:
        """Submit a reply to the outstanding question."""
        session = lookup_session(feature_dir)
        if session is None:
            return self._no_session(feature_dir)

        try:
            result = session.answer(answer)
        except AnswerValidationError as e:
            response = {
                "error": str(e),
                "suggestion": e.suggestion,
                "next_suggested_step": e.next_suggested_step,
                "workflow_tip": "Same question: answers that do not fit are not counted.",
            }
            if session.current is not None:
                response.update({
                    "question": session.current.to_dict(),
                    "rendered_question": render_question(session.current, number=session.questions_asked),
                })
            return response
        except (PersistenceError, DocumentStructureError, SessionStateError) as e:
            if isinstance(e, PersistenceError):
                discard_session(feature_dir)
            return self._error_response(e, "answer_question", feature_dir=feature_dir)

        if result is None:
            response = self._finish(session)
            response["message"] = "Clarification stopped on request."
            return response

        response = {"accepted": result.to_dict()}
        question = session.next_question()
        if question is None:
            response.update(self._finish(session))
            return response
        response.update(self._question_payload(session, question))
        response["message"] = f"Answer recorded under {', '.join(result.sections)}."
        return response

    def stop(self, feature_dir: str) -> Dict[str, Any]:
        """End the session early and return the completion report."""
        session = lookup_session(feature_dir)
        if session is None:
            return self._no_session(feature_dir)
        session.stop()
        response = self._finish(session)
        response["message"] = "Clarification stopped on request."
        return response

    def report(self, feature_dir: str) -> Dict[str, Any]:
        """Current completion report for a live session."""
        session = lookup_session(feature_dir)
        if session is None:
            return self._no_session(feature_dir)
        report = session.report()
        return {
            "report": report.to_dict(),
            "rendered_report": render_report(report),
            "terminated": session.terminated,
        }

    def scan(self, root: Optional[str] = None) -> Dict[str, Any]:
        """Coverage of the active spec without starting a session."""
        try:
            config = self.config_factory(root)
            session = self.session_factory(config)
            paths = session.locator.locate()
            document = session.locator.load_spec(paths)
        except (ClarifyError, ValueError) as e:
            return self._error_response(e, "scan_coverage", root=root)

        coverage = session.scanner.scan(document)
        candidates = session.scanner.candidate_questions(document)
        return {
            "paths": paths.to_dict(),
            "coverage": [entry.to_dict() for entry in coverage],
            "candidate_count": len(candidates),
            "next_suggested_step": "start_clarification" if candidates else "plan",
            "workflow_tip": "Run start_clarification to resolve outstanding categories"
            if candidates else "No critical ambiguities detected; proceed to planning",
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _question_payload(self, session: ClarificationSession, question: CandidateQuestion) -> Dict[str, Any]:
        return {
            "question": question.to_dict(),
            "rendered_question": render_question(question, number=session.questions_asked),
            "questions_asked": session.questions_asked,
            "max_questions": session.config.max_questions,
            "next_suggested_step": "answer_question",
            "workflow_tip": "Present the question as rendered; reply with an option letter, "
                            "a short answer, or 'stop' to end the session",
        }

    def _finish(self, session: ClarificationSession) -> Dict[str, Any]:
        report = session.report()
        discard_session(session.feature_key)
        next_step = "plan" if not report.deferred_categories or report.questions_asked == 0 else "start_clarification"
        return {
            "report": report.to_dict(),
            "rendered_report": render_report(report),
            "terminated": True,
            "next_suggested_step": next_step,
            "workflow_tip": report.recommendation,
        }

    def _no_session(self, feature_dir: str) -> Dict[str, Any]:
        return {
            "error": f"No active clarification session for '{feature_dir}'",
            "suggestion": "Call start_clarification first",
            "next_suggested_step": "start_clarification",
        }

    def _error_response(self, error: Exception, operation: str, **context: Any) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, **context})
        if isinstance(error, ClarifyError) and error.suggestion:
            suggestion = error.suggestion
            next_step = error.next_suggested_step or operation
        elif isinstance(error, ValueError) and not isinstance(error, ClarifyError):
            suggestion = ROOT_SUGGESTION
            next_step = operation
        else:
            suggestion = "Reload the spec and start a new clarification session."
            next_step = "start_clarification"
        response = {
            "error": str(error),
            "suggestion": suggestion,
            "next_suggested_step": next_step,
        }
        if isinstance(error, (LocatorError, SpecNotFoundError)):
            response["workflow_tip"] = "Clarification needs an existing feature spec; no paths are created here."
        return response
