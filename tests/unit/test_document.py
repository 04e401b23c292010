"""Unit tests for the SpecDocument snapshot."""

import pytest

from speckit_clarify.document import SpecDocument, normalize_title
from speckit_clarify.errors import DocumentStructureError
from speckit_clarify.models import ClarificationRecord

SPEC = """# Feature: Invites

## Overview
Users can invite a teammate.

## Requirements
- FR-001: System MUST send invitations.
"""


def _record(answer="Excludes billing", date="2025-01-15"):
    return ClarificationRecord("What is out of scope?", answer, date)


class TestParsing:
    """Test cases for loading and sectioning."""

    def test_text_round_trip(self):
        assert SpecDocument.from_text(SPEC).text == SPEC

    def test_missing_trailing_newline_is_kept(self):
        assert SpecDocument.from_text("# Title\nbody").text == "# Title\nbody"

    def test_crlf_is_normalized(self):
        assert SpecDocument.from_text("# Title\r\nbody\r\n").text == "# Title\nbody\n"

    def test_load(self, tmp_path):
        path = tmp_path / "spec.md"
        path.write_text(SPEC, encoding="utf-8")
        assert SpecDocument.load(path).lines[0] == "# Feature: Invites"

    def test_sections(self):
        sections = SpecDocument.from_text(SPEC).sections()

        assert [(s.level, s.title) for s in sections] == [
            (1, "Feature: Invites"),
            (2, "Overview"),
            (2, "Requirements"),
        ]
        title, overview = sections[0], sections[1]
        assert title.end == len(SpecDocument.from_text(SPEC).lines)
        assert overview.body_end == overview.end == sections[2].start

    def test_headings_in_code_fences_are_ignored(self):
        doc = SpecDocument.from_text("## Overview\n```\n# not a heading\n```\ntext\n")

        assert [s.title for s in doc.sections()] == ["Overview"]
        assert doc.body_lines(doc.sections()[0]) == [(4, "text")]

    def test_normalize_title(self):
        assert normalize_title("User Scenarios & Testing *(mandatory)*") == "user scenarios & testing"
        assert normalize_title("Non-Functional `Requirements`") == "non-functional requirements"

    def test_find_sections_prefers_earliest_keyword(self):
        doc = SpecDocument.from_text("## Scope\n\n## Functional Requirements\n\n## Non-Functional Requirements\n")

        found = doc.find_sections(("functional requirements", "scope"), exclude=("non-functional",))

        assert [s.title for s in found] == ["Functional Requirements"]

    def test_overview_falls_back_to_first_second_level_section(self):
        doc = SpecDocument.from_text("# T\n\n## Requirements\n\n## Entities\n")
        assert doc.overview_section().title == "Requirements"


class TestHeadingProblems:
    """Test cases for heading hierarchy checks."""

    def test_skipped_level(self):
        doc = SpecDocument.from_text("# Title\n### Deep\n")
        assert doc.heading_problems() == ["skipped heading level before 'Deep'"]

    def test_duplicate_siblings(self):
        doc = SpecDocument.from_text("# Title\n## Notes\n## Notes\n")
        assert doc.heading_problems() == ["duplicate heading 'Notes'"]

    def test_same_title_under_different_parents_is_fine(self):
        doc = SpecDocument.from_text("# T\n## A\n### Notes\n## B\n### Notes\n")
        assert doc.heading_problems() == []

    def test_new_problems_ignore_existing_ones(self):
        baseline = SpecDocument.from_text("# Title\n### Deep\n")
        edited = SpecDocument.from_text("# Title\n### Deep\n## Notes\n## Notes\n")

        assert edited.new_heading_problems(baseline) == ["duplicate heading 'Notes'"]


class TestClarificationHistory:
    """Test cases for add_clarification."""

    def test_first_clarification_goes_after_overview(self):
        doc = SpecDocument.from_text(SPEC).add_clarification(_record())

        assert doc.text == (
            "# Feature: Invites\n"
            "\n"
            "## Overview\n"
            "Users can invite a teammate.\n"
            "\n"
            "## Clarifications\n"
            "\n"
            "### Session 2025-01-15\n"
            "\n"
            "- Q: What is out of scope? → A: Excludes billing\n"
            "\n"
            "## Requirements\n"
            "- FR-001: System MUST send invitations.\n"
        )
        assert doc.heading_problems() == []

    def test_same_day_answers_share_one_session(self):
        doc = SpecDocument.from_text(SPEC)
        doc = doc.add_clarification(_record("Excludes billing"))
        doc = doc.add_clarification(_record("Excludes SSO"))

        assert doc.text.count("### Session 2025-01-15") == 1
        first = doc.lines.index("- Q: What is out of scope? → A: Excludes billing")
        assert doc.lines[first + 1] == "- Q: What is out of scope? → A: Excludes SSO"

    def test_new_day_gets_new_session_heading(self):
        doc = SpecDocument.from_text(SPEC)
        doc = doc.add_clarification(_record(date="2025-01-15"))
        doc = doc.add_clarification(_record(date="2025-01-16"))

        sessions = [s.title for s in doc.sections() if s.title.startswith("Session")]
        assert sessions == ["Session 2025-01-15", "Session 2025-01-16"]
        assert doc.heading_problems() == []

    def test_document_without_overview_appends_at_end(self):
        doc = SpecDocument.from_text("# Title\n\nText\n").add_clarification(_record())

        assert doc.lines[-5:] == (
            "## Clarifications",
            "",
            "### Session 2025-01-15",
            "",
            "- Q: What is out of scope? → A: Excludes billing",
        )

    def test_original_snapshot_is_untouched(self):
        doc = SpecDocument.from_text(SPEC)
        doc.add_clarification(_record())
        assert doc.text == SPEC

    def test_clarifications_at_deepest_level_is_rejected(self):
        doc = SpecDocument.from_text("## Overview\n\n###### Clarifications\n")
        with pytest.raises(DocumentStructureError):
            doc.add_clarification(_record())

    def test_heading_that_only_starts_with_session_is_not_history(self):
        doc = SpecDocument.from_text("## Session management\n- Tokens expire.\n")
        assert [s.title for s in doc.find_sections(("session",))] == ["Session management"]


class TestRenameTerm:
    """Test cases for rename_term."""

    def test_case_and_plural_are_preserved(self):
        doc = SpecDocument.from_text("Users invite a user.\nThe USER table.\nusername stays.\n")

        renamed, changed = doc.rename_term("user", "Member")

        assert renamed.lines == ("Members invite a member.", "The MEMBER table.", "username stays.")
        assert changed == [0, 1]

    def test_history_is_not_rewritten(self):
        doc = SpecDocument.from_text(SPEC).add_clarification(_record("User stays"))

        renamed, _ = doc.rename_term("user", "member")

        assert "- Q: What is out of scope? → A: User stays" in renamed.lines
        assert "Members can invite a teammate." in renamed.lines


class TestEdits:
    """Test cases for line-level edits."""

    def test_append_to_section_after_last_body_line(self):
        doc = SpecDocument.from_text(SPEC)
        requirements = doc.find_sections(("requirements",))[0]

        updated = doc.append_to_section(requirements, ["- FR-002: Invitations expire after 7 days."])

        assert updated.lines[-1] == "- FR-002: Invitations expire after 7 days."

    def test_append_to_empty_section_keeps_spacing(self):
        doc = SpecDocument.from_text("## Non-Goals\n\n## Next\n")
        section = doc.find_sections(("non-goals",))[0]

        updated = doc.append_to_section(section, ["- Excludes billing"])

        assert updated.text == "## Non-Goals\n\n- Excludes billing\n\n## Next\n"

    def test_index_of_skips_history(self):
        doc = SpecDocument.from_text("## Overview\n\n## Clarifications\n- TBD\n\n## Notes\n- TBD\n")
        assert doc.index_of("- TBD") == 6
