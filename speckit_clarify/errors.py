"""Exception types raised by the clarification loop."""

from __future__ import annotations


class ClarifyError(Exception):
    """Base class for clarification failures."""

    suggestion: str = ""
    next_suggested_step: str = ""


class LocatorError(ClarifyError):
    """Discovery payload was missing or malformed."""

    suggestion = (
        "Run the prerequisite setup step (check-prerequisites) for the active feature "
        "branch, then retry. Do not create the spec path by hand."
    )
    next_suggested_step = "check_prerequisites"


class SpecNotFoundError(ClarifyError, FileNotFoundError):
    """The feature spec file does not exist."""

    suggestion = "Create the feature specification first (/specify), then run clarification again."
    next_suggested_step = "specify"


class AnswerValidationError(ClarifyError, ValueError):
    """An answer does not fit the question's option set or word bound.

    Recoverable: the same question stays outstanding.
    """

    suggestion = "Reply with one option letter or a short answer of at most 5 words."
    next_suggested_step = "answer_question"


class DocumentStructureError(ClarifyError):
    """An edit would break the spec's heading hierarchy.

    The question stays outstanding; the spec on disk is untouched.
    """

    suggestion = "Fix the heading structure of the spec or reply with a different answer."
    next_suggested_step = "answer_question"


class PersistenceError(ClarifyError, RuntimeError):
    """Writing the spec failed; the on-disk state must be re-loaded."""

    suggestion = "Check that the spec file is writable, then reload and retry the last answer."
    next_suggested_step = "start_clarification"


class SessionStateError(ClarifyError):
    """An operation was attempted in the wrong editor or session state."""
