"""Unit tests for the clarification editor.

This module tests answer integration, the editor state machine and atomic
persistence of the spec.
"""

import os
from unittest.mock import patch

import pytest

from speckit_clarify import editor as editor_module
from speckit_clarify.document import SpecDocument
from speckit_clarify.editor import (
    STATE_AWAITING_ANSWER,
    STATE_FAILED,
    STATE_IDLE,
    STATE_PERSISTED,
    STATE_TERMINATED,
    ClarificationEditor,
    apply_clarification,
    atomic_write_text,
)
from speckit_clarify.errors import (
    AnswerValidationError,
    DocumentStructureError,
    PersistenceError,
    SessionStateError,
)
from speckit_clarify.models import CandidateQuestion, QuestionOption
from speckit_clarify.speckit_logging import observability_hooks

DATE = "2025-01-15"

SPEC = """# Feature: Invites

## Overview
Users can invite a teammate.

## Non-Functional Requirements
- Invitations must be fast.

## Non-Goals
"""

PERFORMANCE = CandidateQuestion(
    category="Non-Functional Quality Attributes",
    text="What should 'fast' mean in: Invitations must be fast?",
    impact=4,
    uncertainty=3,
    allows_short=True,
    target_sections=("non-functional",),
    statement="Invitations must be fast ({answer}).",
    superseded_line="- Invitations must be fast.",
)

OUT_OF_SCOPE = CandidateQuestion(
    category="Explicit out-of-scope declarations",
    text="What is explicitly out of scope for this feature?",
    impact=3,
    uncertainty=5,
    allows_short=True,
    target_sections=("non-goals", "out of scope"),
)

CONSTRAINT = CandidateQuestion(
    category="Constraints & Tradeoffs",
    text="Which constraint dominates design tradeoffs?",
    impact=2,
    uncertainty=5,
    options=(QuestionOption("A", "Delivery timeline"), QuestionOption("B", "Operating cost")),
    target_sections=("constraints",),
    statement="Dominant constraint: {answer}",
)


class TestApplyClarification:
    """Test cases for apply_clarification."""

    def test_superseded_statement_is_replaced(self):
        document = SpecDocument.from_text(SPEC)

        updated, result = apply_clarification(document, PERFORMANCE, "p95 under 200 ms", DATE)

        assert "- Invitations must be fast." not in updated.lines
        assert "- Invitations must be fast (p95 under 200 ms)." in updated.lines
        assert result.superseded == "- Invitations must be fast."
        assert result.sections == ["Clarifications", "Non-Functional Requirements"]

    def test_rewritten_line_keeps_its_list_marker(self):
        text = "## Overview\nInvites.\n\n## Requirements\n  1. Retention period: TBD\nExports are fast.\n"
        document = SpecDocument.from_text(text)
        retention = CandidateQuestion(
            category="Misc / Placeholders",
            text="How should this open item be resolved: Retention period?",
            impact=3,
            uncertainty=3,
            allows_short=True,
            statement="Retention period: {answer}",
            superseded_line="  1. Retention period: TBD",
        )
        exports = CandidateQuestion(
            category="Non-Functional Quality Attributes",
            text="What should 'fast' mean in: Exports are fast?",
            impact=4,
            uncertainty=3,
            allows_short=True,
            statement="Exports are fast ({answer}).",
            superseded_line="Exports are fast.",
        )

        first, _ = apply_clarification(document, retention, "90 days", DATE)
        second, _ = apply_clarification(first, exports, "under 2 seconds", DATE)

        assert "  1. Retention period: 90 days" in second.lines
        assert "Exports are fast (under 2 seconds)." in second.lines

    def test_new_bullet_goes_to_target_section(self):
        document = SpecDocument.from_text(SPEC)

        updated, result = apply_clarification(document, OUT_OF_SCOPE, "Excludes billing", DATE)

        non_goals = updated.find_sections(("non-goals",))[0]
        assert [line for _, line in updated.body_lines(non_goals)] == ["- Excludes billing"]
        assert result.sections == ["Clarifications", "Non-Goals"]
        assert result.superseded is None

    def test_missing_target_section_records_only_the_answer(self):
        document = SpecDocument.from_text(SPEC)

        updated, result = apply_clarification(document, CONSTRAINT, "Operating cost", DATE)

        assert result.sections == ["Clarifications"]
        assert not any(line.startswith("- Dominant constraint") for line in updated.lines)
        assert "- Q: Which constraint dominates design tradeoffs? → A: Operating cost" in updated.lines

    def test_exactly_one_history_bullet_per_answer(self):
        document = SpecDocument.from_text(SPEC)
        first, _ = apply_clarification(document, OUT_OF_SCOPE, "Excludes billing", DATE)
        second, _ = apply_clarification(first, CONSTRAINT, "Operating cost", DATE)

        history = [line for line in second.lines if line.startswith("- Q: ")]
        assert len(history) == 2
        assert set(first.lines) - {""} <= set(second.lines)

    def test_input_snapshot_is_unchanged(self):
        document = SpecDocument.from_text(SPEC)
        apply_clarification(document, PERFORMANCE, "p95 under 200 ms", DATE)
        assert document.text == SPEC

    def test_terminology_rename(self):
        document = SpecDocument.from_text(
            "## Overview\nUsers invite a member.\n\n## Glossary\n- Workspace: shared space.\n"
        )
        question = CandidateQuestion(
            category="Terminology & Consistency",
            text="Which term should the spec use consistently for this concept?",
            impact=2,
            uncertainty=3,
            options=(QuestionOption("A", "User"), QuestionOption("B", "Member")),
            allows_short=True,
            target_sections=("glossary",),
            statement="{answer}: canonical term for this concept",
            rename_terms=("user", "member"),
        )

        updated, result = apply_clarification(document, question, "Member", DATE)

        assert "Members invite a member." in updated.lines
        assert "- Member: canonical term for this concept" in updated.lines
        assert result.record.answer == 'Member (formerly "User")'
        assert result.renamed_lines == 1
        assert result.sections == ["Clarifications", "Overview", "Glossary"]


class TestAtomicWrite:
    """Test cases for atomic_write_text."""

    def test_writes_and_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "spec.md"
        target.write_text("old\n", encoding="utf-8")

        atomic_write_text(target, "new\n")

        assert target.read_text(encoding="utf-8") == "new\n"
        assert os.listdir(tmp_path) == ["spec.md"]

    def test_failed_replace_keeps_original(self, tmp_path):
        target = tmp_path / "spec.md"
        target.write_text("old\n", encoding="utf-8")

        with patch.object(editor_module.os, "replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write_text(target, "new\n")

        assert target.read_text(encoding="utf-8") == "old\n"
        assert os.listdir(tmp_path) == ["spec.md"]


class TestClarificationEditor:
    """Test cases for the editor state machine."""

    @pytest.fixture
    def editor(self, tmp_path):
        spec_path = tmp_path / "spec.md"
        spec_path.write_text(SPEC, encoding="utf-8")
        return ClarificationEditor(spec_path, SpecDocument.from_text(SPEC), session_date=DATE)

    def test_accepted_answer_is_persisted(self, editor):
        editor.ask(OUT_OF_SCOPE)
        assert editor.state == STATE_AWAITING_ANSWER

        result = editor.submit("Excludes billing")

        assert editor.state == STATE_PERSISTED
        assert editor.pending is None
        on_disk = editor.spec_path.read_text(encoding="utf-8")
        assert "- Excludes billing" in on_disk
        assert "### Session 2025-01-15" in on_disk
        assert editor.document.text == on_disk
        assert editor.records == [result.record]

    def test_invalid_answer_keeps_question_outstanding(self, editor):
        editor.ask(OUT_OF_SCOPE)

        with pytest.raises(AnswerValidationError):
            editor.submit("billing and invoicing are not part of this")

        assert editor.state == STATE_AWAITING_ANSWER
        assert editor.pending is OUT_OF_SCOPE
        assert editor.spec_path.read_text(encoding="utf-8") == SPEC

    def test_only_one_question_at_a_time(self, editor):
        editor.ask(OUT_OF_SCOPE)
        with pytest.raises(SessionStateError):
            editor.ask(CONSTRAINT)

    def test_submit_without_question(self, editor):
        with pytest.raises(SessionStateError):
            editor.submit("A")

    def test_next_question_after_persist(self, editor):
        editor.ask(OUT_OF_SCOPE)
        editor.submit("Excludes billing")

        editor.ask(CONSTRAINT)

        assert editor.state == STATE_AWAITING_ANSWER

    def test_write_failure_moves_to_failed(self, editor):
        editor.ask(OUT_OF_SCOPE)

        with patch.object(editor_module, "atomic_write_text", side_effect=OSError("read-only")):
            with pytest.raises(PersistenceError, match="reload before continuing"):
                editor.submit("Excludes billing")

        assert editor.state == STATE_FAILED
        assert editor.document.text == SPEC
        with pytest.raises(SessionStateError):
            editor.ask(CONSTRAINT)

        editor.reload()
        assert editor.state == STATE_IDLE
        editor.ask(CONSTRAINT)

    def test_structure_error_keeps_question_outstanding(self, tmp_path):
        text = "## Overview\n\n###### Clarifications\n"
        spec_path = tmp_path / "spec.md"
        spec_path.write_text(text, encoding="utf-8")
        editor = ClarificationEditor(spec_path, SpecDocument.from_text(text), session_date=DATE)
        editor.ask(CONSTRAINT)

        with pytest.raises(DocumentStructureError):
            editor.submit("A")

        assert editor.state == STATE_AWAITING_ANSWER
        assert spec_path.read_text(encoding="utf-8") == text

    def test_terminate(self, editor):
        editor.ask(OUT_OF_SCOPE)
        editor.terminate()

        assert editor.state == STATE_TERMINATED
        with pytest.raises(SessionStateError):
            editor.ask(CONSTRAINT)

    def test_events_are_emitted(self, editor):
        events = []

        def on_accepted(**data):
            events.append(("answer_accepted", data["category"]))

        def on_persisted(**data):
            events.append(("spec_persisted", data["spec_path"]))

        observability_hooks.register_hook("answer_accepted", on_accepted)
        observability_hooks.register_hook("spec_persisted", on_persisted)
        try:
            editor.ask(OUT_OF_SCOPE)
            editor.submit("Excludes billing")
        finally:
            observability_hooks.unregister_hook("answer_accepted", on_accepted)
            observability_hooks.unregister_hook("spec_persisted", on_persisted)

        assert events == [
            ("spec_persisted", str(editor.spec_path)),
            ("answer_accepted", OUT_OF_SCOPE.category),
        ]
