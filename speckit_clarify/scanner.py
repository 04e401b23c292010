"""Ambiguity scanning for feature specifications.

The scanner walks a fixed taxonomy of categories over a ``SpecDocument`` and
assigns each one a coverage status. It never mutates the document, so two
scans of the same snapshot always agree.

Question priority is ``impact x uncertainty``. Impact is a static weight per
category (how much a wrong guess would cost downstream planning); uncertainty
is 5 for a Missing category and 3 for a Partial one.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .document import BULLET_RE, SpecDocument
from .models import (
    OPTION_LABELS,
    STATUS_CLEAR,
    STATUS_MISSING,
    STATUS_PARTIAL,
    CandidateQuestion,
    CoverageEntry,
    QuestionOption,
)
from .speckit_logging import log_performance

logger = logging.getLogger("speckit.clarify.scanner")

FUNCTIONAL_SCOPE = "Functional Scope & Behavior"
DATA_MODEL = "Domain & Data Model"
INTERACTION_FLOW = "Interaction & UX Flow"
NON_FUNCTIONAL = "Non-Functional Quality Attributes"
INTEGRATIONS = "Integration & External Dependencies"
EDGE_CASES = "Edge Cases & Failure Handling"
CONSTRAINTS = "Constraints & Tradeoffs"
TERMINOLOGY = "Terminology & Consistency"
COMPLETION_SIGNALS = "Completion Signals"
PLACEHOLDERS = "Misc / Placeholders"
OUT_OF_SCOPE = "Explicit out-of-scope declarations"

KIND_SECTION = "section"
KIND_TERMINOLOGY = "terminology"
KIND_PLACEHOLDERS = "placeholders"
KIND_EXCLUSIONS = "exclusions"

UNCERTAINTY = {STATUS_MISSING: 5, STATUS_PARTIAL: 3}

AMBIGUOUS_HINTS: Dict[str, str] = {
    "fast": "Specify measurable performance expectations (e.g., latency, throughput).",
    "quick": "Clarify concrete speed targets or user-facing latency requirements.",
    "responsive": "Define acceptable response thresholds across target devices.",
    "secure": "Describe required security controls (authN/Z, encryption, compliance).",
    "intuitive": "Document usability heuristics or UX patterns that define 'intuitive'.",
    "simple": "Clarify what simplicity means (workflow steps, learning time, UI density).",
    "scalable": "Provide scale targets (users, data volume, concurrency) and constraints.",
    "efficient": "Describe efficiency metrics (resource usage, time savings).",
    "robust": "Identify expected failure conditions and resilience requirements.",
    "reliable": "Specify uptime/SLA expectations and error budgets.",
    "modern": "Clarify UI/UX expectations or technology constraints for 'modern'.",
    "accessible": "List accessibility standards (e.g., WCAG level) that must be satisfied.",
    "compliant": "Identify the compliance regimes that apply (e.g., GDPR, SOC2).",
    "as needed": "Define the specific conditions that trigger this action.",
    "appropriate": "Define measurable criteria for 'appropriate'.",
    "timely": "Specify an exact time threshold.",
    "user-friendly": "Define specific usability criteria.",
}

# a term followed by a parenthetical has already been qualified
VAGUE_RE = re.compile(
    r"\b(" + "|".join(re.escape(term) for term in sorted(AMBIGUOUS_HINTS, key=len, reverse=True)) + r")\b(?!\s*\()",
    re.IGNORECASE,
)
PLACEHOLDER_RE = re.compile(
    r"\[NEEDS CLARIFICATION(?::[^\]]*)?\]|\bTODO\b|\bTBD\b|\?\?\?",
)
QUANTITY_RE = re.compile(
    r"\d+(?:[.,]\d+)?\s*(?:ms|milliseconds?|s|sec|seconds?|minutes?|hours?|days?|%|rps|req/s|"
    r"requests?|users?|records?|items?|[KMGT]B)\b|\bp9\d\b|\bWCAG\b",
    re.IGNORECASE,
)

SYNONYM_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("user", "member", "customer", "client"),
    ("admin", "administrator", "operator"),
    ("item", "product", "listing"),
)


@dataclass(slots=True, frozen=True)
class Category:
    """One taxonomy bucket and the heuristics used to assess it."""

    name: str
    impact: int
    kind: str = KIND_SECTION
    headings: Tuple[str, ...] = ()
    exclude_headings: Tuple[str, ...] = ()
    signals: Optional[Pattern] = None
    requires_quantities: bool = False
    question: str = ""
    options: Tuple[str, ...] = ()
    allows_short: bool = False
    statement: str = "{answer}"


TAXONOMY: Tuple[Category, ...] = (
    Category(
        name=FUNCTIONAL_SCOPE,
        impact=5,
        headings=("functional requirements", "requirements", "user goals", "scope"),
        exclude_headings=("non-functional", "nonfunctional", "out of scope", "out-of-scope", "non-goals"),
        signals=re.compile(r"\b(must|shall)\b", re.IGNORECASE),
        question="What single outcome must this feature deliver?",
        allows_short=True,
        statement="Core outcome: {answer}",
    ),
    Category(
        name=DATA_MODEL,
        impact=4,
        headings=("key entities", "data model", "entities", "domain model"),
        signals=re.compile(r"\b(entit(?:y|ies)|attributes?|relationships?|schema|identifiers?)\b", re.IGNORECASE),
        question="What data volume should the primary entity support?",
        options=("Under 10,000 records", "10,000 to 1 million records", "More than 1 million records"),
        allows_short=True,
        statement="Expected data volume: {answer}",
    ),
    Category(
        name=INTERACTION_FLOW,
        impact=4,
        headings=("user scenarios", "user stories", "user story", "acceptance scenarios", "user flow", "user journey"),
        signals=re.compile(r"\bas an? [\w ]+, I want\b|\bGiven\b.+\bWhen\b", re.IGNORECASE),
        question="How should users complete the primary journey?",
        options=("Single screen in one step", "Guided multi-step flow", "API or command line only"),
        statement="Primary journey: {answer}",
    ),
    Category(
        name=NON_FUNCTIONAL,
        impact=4,
        headings=("non-functional", "nonfunctional", "quality attributes", "performance"),
        signals=re.compile(
            r"\b(performance|latency|throughput|availability|uptime|scalab\w*|reliab\w*|security|observability)\b",
            re.IGNORECASE,
        ),
        requires_quantities=True,
        question="What performance target should the primary operation meet?",
        options=("p95 under 200 ms", "p95 under 1 second", "Best effort without a target"),
        allows_short=True,
        statement="Performance target: {answer}",
    ),
    Category(
        name=INTEGRATIONS,
        impact=3,
        headings=("integrations", "integration", "dependencies", "external services", "interfaces"),
        signals=re.compile(r"\b(third[- ]party|external|integrat\w*|webhooks?|APIs?)\b", re.IGNORECASE),
        question="How should failures of external dependencies be handled?",
        options=("Retry, then surface an error", "Degrade gracefully and continue", "Fail fast without retry"),
        statement="External dependency failures: {answer}",
    ),
    Category(
        name=EDGE_CASES,
        impact=3,
        headings=("edge cases", "error handling", "failure modes"),
        signals=re.compile(r"\b(edge cases?|invalid|failures?|fails|errors?)\b", re.IGNORECASE),
        question="How should invalid input be handled?",
        options=("Reject with a validation message", "Accept and flag for review", "Ignore it silently"),
        statement="Invalid input: {answer}",
    ),
    Category(
        name=CONSTRAINTS,
        impact=2,
        headings=("constraints", "assumptions", "tradeoffs", "trade-offs"),
        signals=re.compile(r"\b(constraints?|assum\w+|trade-?offs?|limited to|must not)\b", re.IGNORECASE),
        question="Which constraint dominates design tradeoffs?",
        options=("Delivery timeline", "Operating cost", "Regulatory compliance", "Compatibility with existing systems"),
        statement="Dominant constraint: {answer}",
    ),
    Category(
        name=TERMINOLOGY,
        impact=2,
        kind=KIND_TERMINOLOGY,
        headings=("glossary", "terminology", "definitions"),
        question="Which term should the spec use consistently for this concept?",
        allows_short=True,
        statement="{answer}: canonical term for this concept",
    ),
    Category(
        name=COMPLETION_SIGNALS,
        impact=3,
        headings=("success criteria", "acceptance criteria", "definition of done", "completion"),
        signals=re.compile(r"\b(success criteria|acceptance criteria|done when|measurable)\b", re.IGNORECASE),
        question="What measurable signal marks this feature as done?",
        options=("All acceptance scenarios pass", "Target metric met in production", "Stakeholder sign-off"),
        allows_short=True,
        statement="Done when: {answer}",
    ),
    Category(
        name=PLACEHOLDERS,
        impact=3,
        kind=KIND_PLACEHOLDERS,
        allows_short=True,
    ),
    Category(
        name=OUT_OF_SCOPE,
        impact=3,
        kind=KIND_EXCLUSIONS,
        headings=("non-goals", "non goals", "out of scope", "out-of-scope", "exclusions"),
        signals=re.compile(
            r"\b(out of scope|out-of-scope|not in scope|excludes?|excluded|will not|won't)\b",
            re.IGNORECASE,
        ),
        question="What is explicitly out of scope for this feature?",
        allows_short=True,
    ),
)


@dataclass(slots=True, frozen=True)
class _Assessment:
    entry: CoverageEntry
    superseded_line: Optional[str] = None
    context: str = ""
    terms: Tuple[str, ...] = ()
    vague_term: str = ""


class AmbiguityScanner:
    """Assign Clear / Partial / Missing to every taxonomy category."""

    def __init__(self, taxonomy: Sequence[Category] = TAXONOMY):
        self.taxonomy = tuple(taxonomy)

    @property
    def category_names(self) -> List[str]:
        return [category.name for category in self.taxonomy]

    @log_performance("scan_spec")
    def scan(self, document: SpecDocument) -> List[CoverageEntry]:
        """Return one coverage entry per category, in taxonomy order."""
        return [self._assess(category, document).entry for category in self.taxonomy]

    def candidate_questions(
        self,
        document: SpecDocument,
        exclude: Iterable[str] = (),
    ) -> List[CandidateQuestion]:
        """Questions for Partial/Missing categories, highest score first."""
        skipped = set(exclude)
        candidates: List[CandidateQuestion] = []
        for category in self.taxonomy:
            if category.name in skipped:
                continue
            assessment = self._assess(category, document)
            if not assessment.entry.needs_clarification:
                continue
            question = self._build_question(category, assessment)
            issues = question.validate()
            if issues:
                logger.warning(f"Dropping malformed question for {category.name}: {issues}")
                continue
            candidates.append(question)
        # sorted() is stable, so taxonomy order breaks ties
        return sorted(candidates, key=lambda question: question.score, reverse=True)

    def top_question(self, document: SpecDocument, exclude: Iterable[str] = ()) -> Optional[CandidateQuestion]:
        candidates = self.candidate_questions(document, exclude)
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def _assess(self, category: Category, document: SpecDocument) -> _Assessment:
        if category.kind == KIND_TERMINOLOGY:
            return self._assess_terminology(category, document)
        if category.kind == KIND_PLACEHOLDERS:
            return self._assess_placeholders(category, document)
        if category.kind == KIND_EXCLUSIONS:
            assessment = self._assess_exclusions(category, document)
        else:
            assessment = self._assess_sections(category, document)

        # an earlier session already settled this category
        if assessment.entry.needs_clarification and category.question in document.answered_questions():
            return _Assessment(CoverageEntry(category.name, STATUS_CLEAR, ("answered in Clarifications",)))
        return assessment

    def _section_content(self, category: Category, document: SpecDocument) -> Tuple[List[str], set]:
        sections = document.find_sections(category.headings, category.exclude_headings)
        content: List[str] = []
        indices = set()
        for section in sections:
            for index, line in document.body_lines(section):
                content.append(line)
                indices.add(index)
        return content, indices

    def _assess_sections(self, category: Category, document: SpecDocument) -> _Assessment:
        content, owned = self._section_content(category, document)
        signal_hits: List[str] = []
        if category.signals is not None:
            skipped = owned | document.protected_indices()
            signal_hits = [
                line for index, line in document.scan_lines()
                if index not in skipped and category.signals.search(line)
            ]

        if not content and not signal_hits:
            return _Assessment(CoverageEntry(category.name, STATUS_MISSING))

        if not content:
            return _Assessment(CoverageEntry(category.name, STATUS_PARTIAL, tuple(signal_hits[:3])))

        vague = [line for line in content if VAGUE_RE.search(line)]
        if vague:
            term = VAGUE_RE.search(vague[0]).group(1).lower()
            hint = AMBIGUOUS_HINTS.get(term, "")
            return _Assessment(
                CoverageEntry(category.name, STATUS_PARTIAL, tuple(vague[:3])),
                superseded_line=vague[0],
                context=f"'{term}' is ambiguous: {hint}" if hint else "",
                vague_term=term,
            )

        # open markers are resolved by the placeholder question, not this one
        pending = [line for line in content if PLACEHOLDER_RE.search(line)]
        if pending:
            return _Assessment(CoverageEntry(category.name, STATUS_PARTIAL, tuple(pending[:3])))

        if category.requires_quantities and not any(QUANTITY_RE.search(line) for line in content):
            return _Assessment(
                CoverageEntry(category.name, STATUS_PARTIAL, ("no measurable target",)),
                context="No quantified target is stated.",
            )

        return _Assessment(CoverageEntry(category.name, STATUS_CLEAR, tuple(content[:1])))

    def _assess_exclusions(self, category: Category, document: SpecDocument) -> _Assessment:
        content, _ = self._section_content(category, document)
        statements = [line for line in content if not PLACEHOLDER_RE.search(line)]
        if not statements:
            protected = document.protected_indices()
            statements = [
                line for index, line in document.scan_lines()
                if index not in protected and category.signals.search(line)
            ]
        if statements:
            return _Assessment(CoverageEntry(category.name, STATUS_CLEAR, tuple(statements[:3])))
        return _Assessment(CoverageEntry(category.name, STATUS_MISSING))

    def _assess_placeholders(self, category: Category, document: SpecDocument) -> _Assessment:
        protected = document.protected_indices()
        markers = [
            line for index, line in document.scan_lines()
            if index not in protected and PLACEHOLDER_RE.search(line)
        ]
        if not markers:
            return _Assessment(CoverageEntry(category.name, STATUS_CLEAR))
        return _Assessment(
            CoverageEntry(category.name, STATUS_PARTIAL, tuple(markers[:3])),
            superseded_line=markers[0],
            context=markers[0].strip(),
        )

    def _assess_terminology(self, category: Category, document: SpecDocument) -> _Assessment:
        protected = document.protected_indices()
        text = "\n".join(line for index, line in document.scan_lines() if index not in protected)
        text += "\n" + "\n".join(
            document.lines[section.start]
            for section in document.sections()
            if section.start not in protected
        )

        conflicts: List[Tuple[int, Tuple[str, ...]]] = []
        for group in SYNONYM_GROUPS:
            counts = Counter()
            for term in group:
                hits = len(re.findall(rf"\b{re.escape(term)}s?\b", text, re.IGNORECASE))
                if hits:
                    counts[term] = hits
            if len(counts) >= 2:
                ordered = tuple(term for term, _ in counts.most_common(len(OPTION_LABELS)))
                conflicts.append((sum(counts.values()), ordered))

        if not conflicts:
            return _Assessment(CoverageEntry(category.name, STATUS_CLEAR))

        conflicts.sort(key=lambda item: item[0], reverse=True)
        terms = conflicts[0][1]
        display = ", ".join(term.title() for term in terms)
        return _Assessment(
            CoverageEntry(category.name, STATUS_PARTIAL, (f"competing terms: {display}",)),
            context=f"Competing terms found: {display}",
            terms=terms,
        )

    # ------------------------------------------------------------------
    # Question generation
    # ------------------------------------------------------------------

    def _build_question(self, category: Category, assessment: _Assessment) -> CandidateQuestion:
        uncertainty = UNCERTAINTY[assessment.entry.status]

        if category.kind == KIND_TERMINOLOGY:
            options = tuple(
                QuestionOption(label, term.title())
                for label, term in zip(OPTION_LABELS, assessment.terms)
            )
            return CandidateQuestion(
                category=category.name,
                text=category.question,
                impact=category.impact,
                uncertainty=uncertainty,
                options=options,
                allows_short=True,
                context=assessment.context,
                target_sections=category.headings,
                statement=category.statement,
                rename_terms=assessment.terms,
            )

        if category.kind == KIND_PLACEHOLDERS:
            line = assessment.superseded_line or ""
            summary = _summarize(_strip_marker(line))
            return CandidateQuestion(
                category=category.name,
                text=f"How should this open item be resolved: {summary}?" if summary
                else "How should this open item be resolved?",
                impact=category.impact,
                uncertainty=uncertainty,
                allows_short=True,
                context=assessment.context,
                statement=_resolved_statement(line),
                superseded_line=assessment.superseded_line,
            )

        if assessment.vague_term:
            line = assessment.superseded_line or ""
            summary = _summarize(_line_body(line))
            return CandidateQuestion(
                category=category.name,
                text=f"What should '{assessment.vague_term}' mean in: {summary}?",
                impact=category.impact,
                uncertainty=uncertainty,
                allows_short=True,
                context=assessment.context,
                target_sections=category.headings,
                statement=_qualified_statement(line),
                superseded_line=assessment.superseded_line,
            )

        # fixed questions add a statement and leave existing lines alone
        options = tuple(
            QuestionOption(label, description)
            for label, description in zip(OPTION_LABELS, category.options)
        )
        return CandidateQuestion(
            category=category.name,
            text=category.question,
            impact=category.impact,
            uncertainty=uncertainty,
            options=options,
            allows_short=category.allows_short,
            context=assessment.context,
            target_sections=category.headings,
            statement=category.statement,
        )


def _line_body(line: str) -> str:
    """Return a line without its list marker."""
    match = BULLET_RE.match(line)
    return line[match.end():].strip() if match else line.strip()


def _escape(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


def _strip_marker(line: str) -> str:
    """Drop placeholder markers and list syntax from a line."""
    text = " ".join(PLACEHOLDER_RE.sub(" ", _line_body(line)).split())
    text = re.sub(r"\s+([.,;:!?)])", r"\1", text)
    return text.strip(" :-")


def _summarize(text: str) -> str:
    text = text.rstrip(".").rstrip()
    return text if len(text) <= 80 else text[:77].rstrip() + "..."


def _resolved_statement(line: str) -> str:
    """Statement template that puts the answer where the first marker was."""
    body = _line_body(line)
    marker = PLACEHOLDER_RE.search(body)
    if marker is None:
        return "{answer}"
    before = body[: marker.start()].rstrip()
    if not before.strip(" :-"):
        cleaned = _strip_marker(body)
        return _escape(cleaned) + ": {answer}" if cleaned else "{answer}"
    after = body[marker.end():]
    return _escape(before) + " {answer}" + _escape(after.rstrip())


def _qualified_statement(line: str) -> str:
    """Statement template that qualifies the first vague term with the answer."""
    body = _line_body(line)
    match = VAGUE_RE.search(body)
    if match is None:
        return _escape(body) + " ({answer})"
    return _escape(body[: match.end()]) + " ({answer})" + _escape(body[match.end():])
