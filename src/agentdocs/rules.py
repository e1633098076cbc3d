from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Mapping

from agentdocs import config
from agentdocs.exceptions import ConfigError
from agentdocs.markdown import Document, Heading, heading_parents
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.timeout_context import check_deadline

ERROR = "error"
WARNING = "warning"
_DEFAULT_TRAILING_PUNCTUATION = ".,;:!"
_VALID_CHECKBOXES = frozenset({" ", "x", "X"})


@dataclass(frozen=True)
class Finding:
    path: str
    line: int
    code: str
    severity: str
    message: str

    @property
    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.path, self.line, self.code, self.message)


@dataclass(frozen=True)
class LintOptions:
    select: frozenset[str] | None = None
    ignore: frozenset[str] = frozenset()
    severity: Mapping[str, str] = field(default_factory=dict)
    max_heading_level: int = 6
    allow_trailing_punctuation: frozenset[str] = frozenset()

    def enabled(self, code: str) -> bool:
        if code in self.ignore:
            return False
        return self.select is None or code in self.select

    def severity_for(self, rule: "Rule") -> str:
        return self.severity.get(rule.code, rule.severity)

    @property
    def trailing_punctuation(self) -> str:
        return "".join(
            char for char in _DEFAULT_TRAILING_PUNCTUATION
            if char not in self.allow_trailing_punctuation
        )


RuleCheck = Callable[[Document, LintOptions], Iterable[tuple[int, str]]]


@dataclass(frozen=True)
class Rule:
    code: str
    name: str
    severity: str
    summary: str
    check: RuleCheck


@dataclass(frozen=True)
class LintResult:
    findings: list[Finding]
    documents: list[str]

    def count(self, severity: str) -> int:
        return sum(1 for finding in self.findings if finding.severity == severity)

    @property
    def summary(self) -> dict[str, object]:
        by_code = Counter(finding.code for finding in self.findings)
        return {
            "documents": len(self.documents),
            "errors": self.count(ERROR),
            "warnings": self.count(WARNING),
            "by_code": {code: by_code[code] for code in sorted(by_code)},
        }


def _has_content(document: Document) -> bool:
    return any(line.strip() for line in document.body_lines)


def _first_body_line(document: Document) -> int:
    for offset, line in enumerate(document.body_lines, start=document.body_offset + 1):
        check_deadline()
        if line.strip():
            return offset
    return document.body_offset + 1


def _check_document_empty(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    if not _has_content(document):
        yield 1, "document has no content"


def _check_frontmatter_unterminated(
    document: Document, options: LintOptions
) -> Iterator[tuple[int, str]]:
    if document.frontmatter_error:
        yield 1, document.frontmatter_error


def _check_fence_unclosed(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for fence in document.fences:
        check_deadline()
        if fence.end_line is None:
            yield fence.line, f"code fence opened with {fence.marker} is never closed"


def _check_heading_missing_h1(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    if not _has_content(document):
        return
    if not any(heading.level == 1 for heading in document.headings):
        yield _first_body_line(document), "document has no level-1 heading"


def _check_heading_multiple_h1(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    top = [heading for heading in document.headings if heading.level == 1]
    for heading in top[1:]:
        check_deadline()
        yield heading.line, f"extra level-1 heading '{heading.title}' (first on line {top[0].line})"


def _check_heading_first_not_h1(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    if document.headings and document.headings[0].level != 1:
        first = document.headings[0]
        yield first.line, f"first heading is level {first.level}, expected level 1"


def _check_heading_level_skip(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    previous: Heading | None = None
    for heading in document.headings:
        check_deadline()
        if previous is not None and heading.level > previous.level + 1:
            yield heading.line, (
                f"heading level jumps from h{previous.level} to h{heading.level}"
            )
        previous = heading


def _check_heading_empty(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for heading in document.headings:
        check_deadline()
        if not heading.title:
            yield heading.line, f"level-{heading.level} heading has no text"


def _check_heading_trailing_punctuation(
    document: Document, options: LintOptions
) -> Iterator[tuple[int, str]]:
    punctuation = options.trailing_punctuation
    for heading in document.headings:
        check_deadline()
        if heading.title and heading.title[-1] in punctuation:
            yield heading.line, f"heading '{heading.title}' ends with '{heading.title[-1]}'"


def _sibling_duplicates(document: Document) -> list[tuple[Heading, Heading]]:
    first_seen: dict[tuple[int, int, str], Heading] = {}
    duplicates: list[tuple[Heading, Heading]] = []
    for heading, parent in zip(document.headings, heading_parents(document)):
        check_deadline()
        if not heading.title:
            continue
        key = (parent.line if parent is not None else 0, heading.level, heading.slug)
        if key in first_seen:
            duplicates.append((heading, first_seen[key]))
        else:
            first_seen[key] = heading
    return duplicates


def _check_heading_duplicate_sibling(
    document: Document, options: LintOptions
) -> Iterator[tuple[int, str]]:
    for heading, first in _sibling_duplicates(document):
        yield heading.line, (
            f"duplicate section title '{heading.title}' under the same parent "
            f"(first on line {first.line})"
        )


def _check_heading_duplicate_title(
    document: Document, options: LintOptions
) -> Iterator[tuple[int, str]]:
    sibling_lines = {heading.line for heading, _first in _sibling_duplicates(document)}
    first_seen: dict[str, Heading] = {}
    for heading in document.headings:
        check_deadline()
        if not heading.title:
            continue
        first = first_seen.setdefault(heading.slug, heading)
        if first is heading or heading.line in sibling_lines:
            continue
        yield heading.line, f"section title '{heading.title}' repeats line {first.line}"


def _check_heading_too_deep(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for heading in document.headings:
        check_deadline()
        if heading.level > options.max_heading_level:
            yield heading.line, (
                f"heading level {heading.level} exceeds maximum {options.max_heading_level}"
            )


def _check_checklist_marker(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for item in document.items:
        check_deadline()
        if item.checkbox and item.checkbox not in _VALID_CHECKBOXES:
            yield item.line, f"checklist marker '[{item.checkbox}]' must be '[ ]' or '[x]'"


def _check_checklist_uppercase(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for item in document.items:
        check_deadline()
        if item.checkbox == "X":
            yield item.line, "use lowercase '[x]' for completed checklist items"


def _check_checklist_spacing(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for item in document.items:
        check_deadline()
        if not item.is_checklist:
            continue
        if item.checkbox == "":
            yield item.line, "empty checklist brackets; use '[ ]'"
        if not item.spaced:
            yield item.line, f"missing space between '{item.marker}' and the checkbox"
        if not item.checkbox_spaced:
            yield item.line, "missing space after the checkbox"


def _check_checklist_empty(document: Document, options: LintOptions) -> Iterator[tuple[int, str]]:
    for item in document.items:
        check_deadline()
        if item.is_checklist and not item.text:
            yield item.line, "checklist item has no text"


def _check_checklist_mixed_markers(
    document: Document, options: LintOptions
) -> Iterator[tuple[int, str]]:
    first_marker: dict[tuple[int, int], str] = {}
    for item in document.items:
        check_deadline()
        if not item.bullet:
            continue
        key = (item.block, item.indent)
        expected = first_marker.setdefault(key, item.marker)
        if item.marker != expected:
            yield item.line, f"list mixes '{expected}' and '{item.marker}' bullets"


RULES: tuple[Rule, ...] = (
    Rule("AD001", "document-empty", ERROR, "document has no body text", _check_document_empty),
    Rule(
        "AD002",
        "frontmatter-unterminated",
        ERROR,
        "frontmatter block is never closed",
        _check_frontmatter_unterminated,
    ),
    Rule("AD003", "fence-unclosed", ERROR, "fenced code block is never closed", _check_fence_unclosed),
    Rule("AD101", "heading-missing-h1", ERROR, "document has no level-1 heading", _check_heading_missing_h1),
    Rule("AD102", "heading-multiple-h1", WARNING, "more than one level-1 heading", _check_heading_multiple_h1),
    Rule("AD103", "heading-first-not-h1", WARNING, "first heading is not level 1", _check_heading_first_not_h1),
    Rule("AD104", "heading-level-skip", ERROR, "heading level increases by more than one", _check_heading_level_skip),
    Rule("AD105", "heading-empty", ERROR, "heading has no text", _check_heading_empty),
    Rule(
        "AD106",
        "heading-trailing-punctuation",
        WARNING,
        "heading ends with punctuation",
        _check_heading_trailing_punctuation,
    ),
    Rule(
        "AD107",
        "heading-duplicate-sibling",
        ERROR,
        "two sections with the same title under one parent",
        _check_heading_duplicate_sibling,
    ),
    Rule(
        "AD108",
        "heading-duplicate-title",
        WARNING,
        "section title repeated elsewhere in the document",
        _check_heading_duplicate_title,
    ),
    Rule("AD109", "heading-too-deep", WARNING, "heading deeper than the configured maximum", _check_heading_too_deep),
    Rule("AD201", "checklist-marker", ERROR, "checkbox is not '[ ]' or '[x]'", _check_checklist_marker),
    Rule("AD202", "checklist-uppercase", WARNING, "checkbox uses '[X]'", _check_checklist_uppercase),
    Rule("AD203", "checklist-spacing", ERROR, "checkbox spacing is malformed", _check_checklist_spacing),
    Rule("AD204", "checklist-empty", ERROR, "checklist item has no text", _check_checklist_empty),
    Rule(
        "AD205",
        "checklist-mixed-markers",
        WARNING,
        "list block mixes bullet characters",
        _check_checklist_mixed_markers,
    ),
)
RULES_BY_CODE: dict[str, Rule] = {rule.code: rule for rule in RULES}
_RULES_BY_NAME: dict[str, Rule] = {rule.name: rule for rule in RULES}


def resolve_codes(values: Iterable[str]) -> frozenset[str]:
    """Map rule codes or names to codes; unknown entries raise ConfigError."""
    codes: set[str] = set()
    for value in values:
        check_deadline()
        token = value.strip()
        if not token:
            continue
        if token.upper() in RULES_BY_CODE:
            codes.add(token.upper())
        elif token.lower() in _RULES_BY_NAME:
            codes.add(_RULES_BY_NAME[token.lower()].code)
        else:
            raise ConfigError("lint", f"unknown rule {token!r}")
    return frozenset(codes)


def lint_options_from_config(
    section: config.TomlTable | None,
    *,
    select: list[str] | None = None,
    ignore: list[str] | None = None,
) -> LintOptions:
    select_values = select if select else config.name_list(section, "select")
    ignore_values = list(ignore or []) + config.name_list(section, "ignore")
    severity = config.severity_overrides(section)
    unknown = [code for code in severity if code not in RULES_BY_CODE]
    if unknown:
        raise ConfigError("lint.severity", f"unknown rule {unknown[0]!r}")
    return LintOptions(
        select=resolve_codes(select_values) if select_values else None,
        ignore=resolve_codes(ignore_values),
        severity=severity,
        max_heading_level=config.int_option(section, "max_heading_level", 6, minimum=1),
        allow_trailing_punctuation=frozenset(
            "".join(config.name_list(section, "allow_trailing_punctuation"))
        ),
    )


def lint_document(document: Document, options: LintOptions | None = None) -> list[Finding]:
    active = options if options is not None else LintOptions()
    findings: list[Finding] = []
    for rule in RULES:
        check_deadline()
        if not active.enabled(rule.code):
            continue
        severity = active.severity_for(rule)
        for line, message in rule.check(document, active):
            check_deadline()
            findings.append(
                Finding(
                    path=document.path,
                    line=line,
                    code=rule.code,
                    severity=severity,
                    message=message,
                )
            )
    return ordered_or_sorted(
        findings,
        source="agentdocs.rules.lint_document",
        key=lambda finding: finding.sort_key,
    )


def lint_documents(
    documents: Mapping[str, Document],
    options: LintOptions | None = None,
) -> LintResult:
    findings: list[Finding] = []
    for path in ordered_or_sorted(documents, source="agentdocs.rules.lint_documents"):
        check_deadline()
        findings.extend(lint_document(documents[path], options))
    return LintResult(
        findings=ordered_or_sorted(
            findings,
            source="agentdocs.rules.lint_documents.findings",
            key=lambda finding: finding.sort_key,
        ),
        documents=sorted(documents),
    )


def findings_by_path(findings: Iterable[Finding]) -> dict[str, list[Finding]]:
    grouped: dict[str, list[Finding]] = defaultdict(list)
    for finding in findings:
        check_deadline()
        grouped[finding.path].append(finding)
    return dict(grouped)
