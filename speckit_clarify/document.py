"""Immutable markdown snapshot of a feature specification.

Every edit returns a new ``SpecDocument``; callers persist the snapshot they
want to keep and discard the rest. Sections are recomputed from the lines on
demand, which is cheap for documents of spec size.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .errors import DocumentStructureError
from .models import ClarificationRecord

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_RE = re.compile(r"^\s*(```|~~~)")
BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
SESSION_RE = re.compile(r"^Session \d{4}-\d{2}-\d{2}$")
HISTORY_RE = re.compile(r"^\s*[-*]\s+Q:\s*(.+?)\s+→\s+A:\s*(.*)$")

CLARIFICATIONS_TITLE = "Clarifications"
SESSION_PREFIX = "Session "
OVERVIEW_KEYWORDS = ("overview", "summary", "context", "purpose", "introduction", "background")


def normalize_title(title: str) -> str:
    """Lower-case a heading title without markdown decoration."""
    text = re.sub(r"\*?\([^)]*\)\*?", " ", title)
    text = re.sub(r"[*_`#]", " ", text)
    text = re.sub(r"[^\w\s&/-]", " ", text)
    return " ".join(text.lower().split())


@dataclass(slots=True, frozen=True)
class Section:
    """A heading and the line range it governs."""

    level: int
    title: str
    start: int
    body_end: int
    end: int

    @property
    def key(self) -> str:
        return normalize_title(self.title)

    def contains(self, index: int) -> bool:
        return self.start <= index < self.end


@dataclass(slots=True, frozen=True)
class SpecDocument:
    """Snapshot of a markdown spec as an ordered tuple of lines."""

    lines: Tuple[str, ...]
    trailing_newline: bool = True

    @classmethod
    def from_text(cls, text: str) -> "SpecDocument":
        return cls(tuple(text.splitlines()), trailing_newline=text.endswith("\n") or not text)

    @classmethod
    def load(cls, path: Path) -> "SpecDocument":
        return cls.from_text(Path(path).read_text(encoding="utf-8"))

    @property
    def text(self) -> str:
        body = "\n".join(self.lines)
        return body + "\n" if self.trailing_newline and self.lines else body

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def fenced_indices(self) -> Set[int]:
        """Indices of lines inside fenced code blocks, fences included."""
        fenced: Set[int] = set()
        inside = False
        for index, line in enumerate(self.lines):
            if FENCE_RE.match(line):
                fenced.add(index)
                inside = not inside
            elif inside:
                fenced.add(index)
        return fenced

    def sections(self) -> List[Section]:
        fenced = self.fenced_indices()
        headings: List[Tuple[int, int, str]] = []
        for index, line in enumerate(self.lines):
            if index in fenced:
                continue
            match = HEADING_RE.match(line)
            if match:
                headings.append((index, len(match.group(1)), match.group(2)))

        sections: List[Section] = []
        total = len(self.lines)
        for position, (index, level, title) in enumerate(headings):
            body_end = headings[position + 1][0] if position + 1 < len(headings) else total
            end = total
            for later_index, later_level, _ in headings[position + 1:]:
                if later_level <= level:
                    end = later_index
                    break
            sections.append(Section(level, title, index, body_end, end))
        return sections

    def section_for_line(self, index: int) -> Optional[Section]:
        """Innermost section holding the given line."""
        owner = None
        for section in self.sections():
            if section.start <= index < section.body_end:
                owner = section
        return owner

    def body_lines(self, section: Section) -> List[Tuple[int, str]]:
        """Non-blank lines of a section's own body, outside code fences."""
        fenced = self.fenced_indices()
        return [
            (index, self.lines[index])
            for index in range(section.start + 1, section.body_end)
            if index not in fenced and self.lines[index].strip()
        ]

    def find_sections(self, keywords: Sequence[str], exclude: Sequence[str] = ()) -> List[Section]:
        """Sections whose title matches the earliest keyword that matches anything."""
        candidates = [
            section for section in self.sections()
            if not any(term in section.key for term in exclude)
            and not self._is_clarification_heading(section)
        ]
        for keyword in keywords:
            matches = [section for section in candidates if keyword in section.key]
            if matches:
                return matches
        return []

    def overview_section(self) -> Optional[Section]:
        second_level = [section for section in self.sections() if section.level == 2]
        for section in second_level:
            if any(keyword in section.key for keyword in OVERVIEW_KEYWORDS):
                return section
        return second_level[0] if second_level else None

    def clarifications_section(self) -> Optional[Section]:
        for section in self.sections():
            if section.key == CLARIFICATIONS_TITLE.lower():
                return section
        return None

    def protected_indices(self) -> Set[int]:
        """Lines belonging to the clarification history."""
        section = self.clarifications_section()
        if section is None:
            return set()
        return set(range(section.start, section.end))

    def answered_questions(self) -> Set[str]:
        """Question texts already recorded in the clarification history."""
        answered: Set[str] = set()
        for index in sorted(self.protected_indices()):
            match = HISTORY_RE.match(self.lines[index])
            if match:
                answered.add(match.group(1).strip())
        return answered

    def scan_lines(self) -> List[Tuple[int, str]]:
        """Non-blank, non-heading lines outside code fences."""
        fenced = self.fenced_indices()
        return [
            (index, line)
            for index, line in enumerate(self.lines)
            if index not in fenced and line.strip() and not HEADING_RE.match(line)
        ]

    def heading_problems(self) -> List[str]:
        """Skipped heading levels and duplicated sibling headings."""
        problems: List[str] = []
        stack: List[Tuple[int, Set[str]]] = []
        top_level: Set[str] = set()
        previous_level = 0
        for section in self.sections():
            if previous_level and section.level > previous_level + 1:
                problems.append(f"skipped heading level before '{section.title}'")
            while stack and stack[-1][0] >= section.level:
                stack.pop()
            siblings = stack[-1][1] if stack else top_level
            if section.key in siblings:
                problems.append(f"duplicate heading '{section.title}'")
            siblings.add(section.key)
            stack.append((section.level, set()))
            previous_level = section.level
        return problems

    def index_of(self, line: str) -> Optional[int]:
        """First index of an exact line outside the clarification history."""
        protected = self.protected_indices()
        for index, candidate in enumerate(self.lines):
            if candidate == line and index not in protected:
                return index
        return None

    # ------------------------------------------------------------------
    # Edits (each returns a new snapshot)
    # ------------------------------------------------------------------

    def replace_line(self, index: int, line: str) -> "SpecDocument":
        lines = list(self.lines)
        lines[index] = line
        return SpecDocument(tuple(lines), self.trailing_newline)

    def insert_lines(self, index: int, new_lines: Sequence[str]) -> "SpecDocument":
        """Insert lines, padding with blanks where a heading would touch text."""
        block = list(new_lines)
        if not block:
            return self
        before = self.lines[index - 1] if index > 0 else None
        after = self.lines[index] if index < len(self.lines) else None
        if before is not None and before.strip() and HEADING_RE.match(block[0]):
            block.insert(0, "")
        if after is not None and after.strip() and block[-1].strip() \
                and (HEADING_RE.match(after) or HEADING_RE.match(block[-1])):
            block.append("")
        lines = list(self.lines[:index]) + block + list(self.lines[index:])
        return SpecDocument(tuple(lines), self.trailing_newline)

    def append_to_section(self, section: Section, new_lines: Sequence[str]) -> "SpecDocument":
        """Append lines after the last non-blank line of a section's own body."""
        body = [index for index in range(section.start + 1, section.body_end) if self.lines[index].strip()]
        if body:
            return self.insert_lines(body[-1] + 1, new_lines)
        return self.insert_lines(section.start + 1, [""] + list(new_lines))

    def add_clarification(self, record: ClarificationRecord) -> "SpecDocument":
        """Record an accepted answer under today's session heading."""
        document = self
        clarifications = document.clarifications_section()
        if clarifications is None:
            document = document._insert_clarifications_section()
            clarifications = document.clarifications_section()

        session_title = f"{SESSION_PREFIX}{record.session_date}"
        session = document._child_section(clarifications, session_title)
        if session is None:
            if clarifications.level >= 6:
                raise DocumentStructureError(
                    f"No heading level is left below '{clarifications.title}' for a session heading"
                )
            heading = "#" * (clarifications.level + 1) + " " + session_title
            document = document.insert_lines(clarifications.end, [heading])
            clarifications = document.clarifications_section()
            session = document._child_section(clarifications, session_title)

        return document.append_to_section(session, [record.render()])

    def rename_term(self, old: str, new: str) -> Tuple["SpecDocument", List[int]]:
        """Replace whole-word uses of ``old`` outside the clarification history.

        Case and a trailing plural ``s`` are carried over to the new term.
        Returns the new snapshot and the indices of changed lines.
        """
        pattern = re.compile(rf"\b({re.escape(old)})(s?)\b", re.IGNORECASE)

        def substitute(match: re.Match) -> str:
            word, plural = match.group(1), match.group(2)
            if plural and word.isupper() and len(word) > 1:
                plural = plural.upper()
            return _match_case(word, new) + plural

        protected = self.protected_indices()
        lines = list(self.lines)
        changed: List[int] = []
        for index, line in enumerate(lines):
            if index in protected:
                continue
            updated = pattern.sub(substitute, line)
            if updated != line:
                lines[index] = updated
                changed.append(index)
        return SpecDocument(tuple(lines), self.trailing_newline), changed

    def section_titles_for(self, indices: Iterable[int]) -> List[str]:
        titles: List[str] = []
        for index in indices:
            section = self.section_for_line(index)
            title = section.title if section else "(preamble)"
            if title not in titles:
                titles.append(title)
        return titles

    def new_heading_problems(self, baseline: "SpecDocument") -> List[str]:
        """Heading problems present here but not in ``baseline``."""
        introduced = Counter(self.heading_problems()) - Counter(baseline.heading_problems())
        return sorted(introduced.elements())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert_clarifications_section(self) -> "SpecDocument":
        overview = self.overview_section()
        level = overview.level if overview else 2
        heading = "#" * level + " " + CLARIFICATIONS_TITLE
        index = overview.end if overview else len(self.lines)
        return self.insert_lines(index, [heading])

    def _child_section(self, parent: Section, title: str) -> Optional[Section]:
        for section in self.sections():
            if parent.start < section.start < parent.end and section.level == parent.level + 1 \
                    and section.title.strip() == title:
                return section
        return None

    @staticmethod
    def _is_clarification_heading(section: Section) -> bool:
        return section.key == CLARIFICATIONS_TITLE.lower() or bool(SESSION_RE.match(section.title.strip()))


def _match_case(source: str, target: str) -> str:
    if len(source) > 1 and source.isupper():
        return target.upper()
    if source[:1].isupper():
        return target[:1].upper() + target[1:]
    return target[:1].lower() + target[1:]
