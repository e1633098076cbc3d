from __future__ import annotations

import posixpath
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from agentdocs.json_types import JSONObject
from agentdocs.markdown import (
    Document,
    Heading,
    heading_parents,
    normalize_inline,
    slugify_heading,
)
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.timeout_context import check_deadline

CANONICAL_SOURCE = "AGENTS.md"
COMPANION_SOURCES = ("CLAUDE.md", "CONTRIBUTING.md", "README.md")
REQUIRED_BEHAVIOR_HEADING = "required behavior"

_MANDATORY_HINT_RE = re.compile(
    r"\b(must|shall|required|never|do not|don't|must not|always|avoid|prefer|use|keep|run)\b",
    re.IGNORECASE,
)
_NEGATIVE_RE = re.compile(r"\b(do not|don't|must not|never|avoid)\b", re.IGNORECASE)
_STEM_STRIP_RE = re.compile(
    r"\b(do not|don't|must not|never|avoid|must|shall|required|always|should)\b"
)
_TOGGLE_TOKEN_RE = re.compile(r"`(?P<token>--[a-z0-9-]+|[A-Z][A-Z0-9_]{2,})`")
_BACKTICK_REF_RE = re.compile(r"`(?P<ref>[^`\s]+\.md#[^`\s]+)`")
_LINK_REF_RE = re.compile(r"\]\((?P<ref>[^)\s]+\.md(?:#[^)\s]*)?)\)")


@dataclass(frozen=True)
class AgentDirective:
    source: str
    scope_root: str
    line: int
    text: str
    normalized: str
    mandatory: bool
    delta_marked: bool
    section: str | None = None


@dataclass(frozen=True)
class DirectiveReference:
    source: str
    line: int
    reference: str
    target: str
    anchor: str | None


@dataclass(frozen=True)
class InstructionGraph:
    root: str
    included_docs: tuple[str, ...]
    directives: tuple[AgentDirective, ...]
    references: tuple[DirectiveReference, ...]
    duplicate_mandatory: list[JSONObject] = field(default_factory=list)
    precedence_conflicts: list[JSONObject] = field(default_factory=list)
    scoped_delta_violations: list[JSONObject] = field(default_factory=list)
    stale_dependency_revisions: list[JSONObject] = field(default_factory=list)
    hidden_operational_toggles: list[JSONObject] = field(default_factory=list)
    broken_references: list[JSONObject] = field(default_factory=list)

    @property
    def canonical_directives(self) -> list[AgentDirective]:
        return [
            directive
            for directive in self.directives
            if directive.source == CANONICAL_SOURCE and directive.mandatory
        ]

    @property
    def summary(self) -> dict[str, int]:
        return {
            "mandatory_directives": sum(1 for item in self.directives if item.mandatory),
            "duplicate_mandatory": len(self.duplicate_mandatory),
            "precedence_conflicts": len(self.precedence_conflicts),
            "scoped_delta_violations": len(self.scoped_delta_violations),
            "stale_dependency_revisions": len(self.stale_dependency_revisions),
            "hidden_operational_toggles": len(self.hidden_operational_toggles),
            "broken_references": len(self.broken_references),
        }

    @property
    def warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.hidden_operational_toggles:
            warnings.append("instruction graph: hidden operational toggles detected")
        return warnings

    @property
    def violations(self) -> list[str]:
        violations: list[str] = []
        if self.duplicate_mandatory:
            violations.append("instruction graph: duplicate mandatory directives detected")
        if self.precedence_conflicts:
            violations.append("instruction graph: conflicting precedence directives detected")
        if self.scoped_delta_violations:
            violations.append(
                "instruction graph: scoped AGENTS directives must be canonical or explicit deltas"
            )
        if self.stale_dependency_revisions:
            violations.append("instruction graph: stale dependency revisions detected")
        if self.broken_references:
            violations.append("instruction graph: broken document references detected")
        return violations


def directive_is_mandatory(text: str) -> bool:
    return bool(_MANDATORY_HINT_RE.search(text))


def directive_is_negative(text: str) -> bool:
    return bool(_NEGATIVE_RE.search(text))


def directive_stem(text: str) -> str:
    lowered = text.lower()
    lowered = _STEM_STRIP_RE.sub(" ", lowered)
    lowered = re.sub(r"[^a-z0-9\s]", " ", lowered)
    lowered = re.sub(r"\s+", " ", lowered).strip()
    return lowered


def agent_scope_root(path: str) -> str:
    parent = Path(path).parent.as_posix()
    return "." if parent in {"", "."} else parent


def _enclosing_heading(headings: tuple[Heading, ...], line: int) -> Heading | None:
    current: Heading | None = None
    for heading in headings:
        if heading.line > line:
            break
        current = heading
    return current


def _required_behavior_lines(document: Document) -> set[int]:
    """Lines of headings that sit at or below a "Required behavior" heading."""
    required: set[int] = set()
    for heading, parent in zip(document.headings, heading_parents(document)):
        check_deadline()
        if heading.title.strip().lower() == REQUIRED_BEHAVIOR_HEADING:
            required.add(heading.line)
        elif parent is not None and parent.line in required:
            required.add(heading.line)
    return required


def extract_directives(path: str, document: Document) -> list[AgentDirective]:
    directives: list[AgentDirective] = []
    required = _required_behavior_lines(document)
    for item in document.items:
        check_deadline()
        if not item.text:
            continue
        heading = _enclosing_heading(document.headings, item.line)
        section = heading.title if heading is not None else None
        in_required_behavior = heading is not None and heading.line in required
        lowered = item.text.lower()
        directives.append(
            AgentDirective(
                source=path,
                scope_root=agent_scope_root(path),
                line=item.line,
                text=item.text,
                normalized=normalize_inline(item.text),
                mandatory=in_required_behavior or directive_is_mandatory(item.text),
                delta_marked=("delta:" in lowered or "[delta]" in lowered),
                section=section,
            )
        )
    return directives


def extract_references(path: str, document: Document) -> list[DirectiveReference]:
    refs: list[DirectiveReference] = []
    fenced = _fenced_lines(document)
    for line_no, raw in enumerate(document.lines, start=1):
        check_deadline()
        if line_no <= document.body_offset or line_no in fenced:
            continue
        for pattern in (_BACKTICK_REF_RE, _LINK_REF_RE):
            for match in pattern.finditer(raw):
                check_deadline()
                ref = match.group("ref")
                if "://" in ref:
                    continue
                base, _sep, anchor = ref.partition("#")
                refs.append(
                    DirectiveReference(
                        source=path,
                        line=line_no,
                        reference=ref,
                        target=base,
                        anchor=anchor or None,
                    )
                )
    return refs


def _fenced_lines(document: Document) -> set[int]:
    lines: set[int] = set()
    for fence in document.fences:
        end = fence.end_line if fence.end_line is not None else len(document.lines)
        lines.update(range(fence.line, end + 1))
    return lines


def included_documents(documents: Mapping[str, Document]) -> list[str]:
    scoped = ordered_or_sorted(
        (path for path in documents if path.endswith(f"/{CANONICAL_SOURCE}")),
        source="agentdocs.directives.included_documents.scoped",
    )
    roots = [path for path in (CANONICAL_SOURCE, *COMPANION_SOURCES) if path in documents]
    return roots + scoped


def _document_revisions(documents: Mapping[str, Document]) -> dict[str, int]:
    revisions: dict[str, int] = {}
    for path, document in documents.items():
        check_deadline()
        revision = document.frontmatter.get("doc_revision")
        if isinstance(revision, int):
            revisions[path] = revision
        sections = document.frontmatter.get("doc_sections")
        if not isinstance(sections, dict):
            continue
        for key, value in sections.items():
            check_deadline()
            if isinstance(key, str) and key and isinstance(value, int):
                revisions[f"{path}#{key}"] = value
    return revisions


def _occurrence(item: AgentDirective) -> JSONObject:
    return {
        "source": item.source,
        "scope_root": item.scope_root,
        "line": item.line,
        "text": item.text,
    }


def _duplicate_mandatory(directives: list[AgentDirective]) -> list[JSONObject]:
    groups: dict[str, list[AgentDirective]] = defaultdict(list)
    for directive in directives:
        check_deadline()
        if directive.mandatory:
            groups[directive.normalized].append(directive)
    duplicates: list[JSONObject] = []
    for norm in ordered_or_sorted(groups, source="agentdocs.directives.duplicates"):
        check_deadline()
        group = groups[norm]
        if len(group) > 1:
            duplicates.append(
                {
                    "normalized": norm,
                    "occurrences": [_occurrence(item) for item in group],
                }
            )
    return duplicates


def _precedence_conflicts(directives: list[AgentDirective]) -> list[JSONObject]:
    by_stem: dict[str, list[AgentDirective]] = defaultdict(list)
    for directive in directives:
        check_deadline()
        if directive.mandatory:
            stem = directive_stem(directive.text)
            if stem:
                by_stem[stem].append(directive)
    conflicts: list[JSONObject] = []
    for stem in ordered_or_sorted(by_stem, source="agentdocs.directives.conflicts"):
        check_deadline()
        group = by_stem[stem]
        negatives = [item for item in group if directive_is_negative(item.text)]
        positives = [item for item in group if not directive_is_negative(item.text)]
        if negatives and positives:
            conflicts.append(
                {
                    "stem": stem,
                    "positive": [
                        {"source": item.source, "line": item.line, "text": item.text}
                        for item in positives
                    ],
                    "negative": [
                        {"source": item.source, "line": item.line, "text": item.text}
                        for item in negatives
                    ],
                }
            )
    return conflicts


def _scoped_delta_violations(directives: list[AgentDirective]) -> list[JSONObject]:
    canonical_norms = {
        directive.normalized
        for directive in directives
        if directive.source == CANONICAL_SOURCE and directive.mandatory
    }
    violations: list[JSONObject] = []
    for directive in directives:
        check_deadline()
        if directive.source == CANONICAL_SOURCE or not directive.mandatory:
            continue
        if not directive.source.endswith(f"/{CANONICAL_SOURCE}"):
            continue
        if directive.normalized in canonical_norms or directive.delta_marked:
            continue
        violations.append(
            {
                "source": directive.source,
                "line": directive.line,
                "text": directive.text,
                "reason": "scoped mandatory directive must be canonical or explicitly marked as delta",
            }
        )
    return violations


def _stale_dependency_revisions(
    documents: Mapping[str, Document], included: list[str]
) -> list[JSONObject]:
    revisions = _document_revisions(documents)
    stale: list[JSONObject] = []
    for path in ordered_or_sorted(included, source="agentdocs.directives.stale"):
        check_deadline()
        reviewed = documents[path].frontmatter.get("doc_reviewed_as_of", {})
        if not isinstance(reviewed, dict):
            continue
        for dep_ref, pinned in reviewed.items():
            check_deadline()
            if not isinstance(dep_ref, str) or not isinstance(pinned, int):
                continue
            actual = revisions.get(dep_ref)
            if actual is None:
                actual = revisions.get(dep_ref.partition("#")[0])
            if actual is not None and actual != pinned:
                stale.append(
                    {
                        "source": path,
                        "dependency": dep_ref,
                        "pinned": pinned,
                        "actual": actual,
                    }
                )
    return stale


def _hidden_operational_toggles(
    documents: Mapping[str, Document], included: list[str]
) -> list[JSONObject]:
    agent_sources = [
        path for path in included
        if path == CANONICAL_SOURCE or path.endswith(f"/{CANONICAL_SOURCE}")
    ]
    visible_tokens = {
        match.group("token")
        for path in agent_sources
        for match in _TOGGLE_TOKEN_RE.finditer(documents[path].body)
    }
    hidden: list[JSONObject] = []
    seen: set[tuple[str, str]] = set()
    for path in included:
        check_deadline()
        if path in agent_sources:
            continue
        for match in _TOGGLE_TOKEN_RE.finditer(documents[path].body):
            check_deadline()
            token = match.group("token")
            if token in visible_tokens or (path, token) in seen:
                continue
            seen.add((path, token))
            hidden.append({"source": path, "token": token})
    return hidden


def _resolve_target(source: str, target: str, documents: Mapping[str, Document]) -> str:
    relative = posixpath.normpath(posixpath.join(posixpath.dirname(source), target))
    if relative in documents:
        return relative
    rooted = posixpath.normpath(target.lstrip("/"))
    if rooted in documents:
        return rooted
    return relative


def _document_anchors(document: Document) -> set[str]:
    anchors = set(document.anchors)
    anchors.update(heading.slug for heading in document.headings)
    anchors.update(heading.anchor for heading in document.headings if heading.anchor)
    sections = document.frontmatter.get("doc_sections")
    if isinstance(sections, dict):
        anchors.update(str(key) for key in sections)
    return anchors


def _broken_references(
    references: list[DirectiveReference],
    documents: Mapping[str, Document],
    root: Path | None,
) -> list[JSONObject]:
    broken: list[JSONObject] = []
    for ref in references:
        check_deadline()
        target = _resolve_target(ref.source, ref.target, documents)
        document = documents.get(target)
        if document is None:
            if root is not None and (root / target).is_file():
                continue
            broken.append(
                {
                    "source": ref.source,
                    "line": ref.line,
                    "reference": ref.reference,
                    "reason": f"missing document {target}",
                }
            )
            continue
        if ref.anchor and ref.anchor not in _document_anchors(document):
            if slugify_heading(ref.anchor) in _document_anchors(document):
                continue
            broken.append(
                {
                    "source": ref.source,
                    "line": ref.line,
                    "reference": ref.reference,
                    "reason": f"missing anchor #{ref.anchor} in {target}",
                }
            )
    return broken


def instruction_graph(
    documents: Mapping[str, Document],
    *,
    root: Path | None = None,
) -> InstructionGraph:
    included = included_documents(documents)
    directives: list[AgentDirective] = []
    references: list[DirectiveReference] = []
    for path in included:
        check_deadline()
        directives.extend(extract_directives(path, documents[path]))
        references.extend(extract_references(path, documents[path]))
    return InstructionGraph(
        root=str(root) if root is not None else ".",
        included_docs=tuple(included),
        directives=tuple(directives),
        references=tuple(references),
        duplicate_mandatory=_duplicate_mandatory(directives),
        precedence_conflicts=_precedence_conflicts(directives),
        scoped_delta_violations=_scoped_delta_violations(directives),
        stale_dependency_revisions=_stale_dependency_revisions(documents, included),
        hidden_operational_toggles=_hidden_operational_toggles(documents, included),
        broken_references=_broken_references(references, documents, root),
    )


def instruction_graph_payload(graph: InstructionGraph) -> JSONObject:
    return {
        "root": graph.root,
        "included_docs": list(graph.included_docs),
        "summary": dict(graph.summary),
        "canonical": {
            "source": CANONICAL_SOURCE,
            "directives": [
                {
                    "line": item.line,
                    "text": item.text,
                    "normalized": item.normalized,
                }
                for item in graph.canonical_directives
            ],
        },
        "directive_references": [
            {"source": ref.source, "reference": ref.reference, "line": ref.line}
            for ref in graph.references
        ],
        "duplicate_mandatory": graph.duplicate_mandatory,
        "precedence_conflicts": graph.precedence_conflicts,
        "scoped_delta_violations": graph.scoped_delta_violations,
        "stale_dependency_revisions": graph.stale_dependency_revisions,
        "hidden_operational_toggles": graph.hidden_operational_toggles,
        "broken_references": graph.broken_references,
    }


def render_instruction_graph_md(graph: InstructionGraph) -> str:
    summary = graph.summary
    md_lines = [
        "# Agent Instruction Graph",
        "",
        f"- canonical source: `{CANONICAL_SOURCE}`",
        f"- mandatory directives: {summary['mandatory_directives']}",
        f"- duplicates: {summary['duplicate_mandatory']}",
        f"- precedence conflicts: {summary['precedence_conflicts']}",
        f"- scoped delta violations: {summary['scoped_delta_violations']}",
        f"- stale dependency revisions: {summary['stale_dependency_revisions']}",
        f"- hidden operational toggles: {summary['hidden_operational_toggles']}",
        f"- broken references: {summary['broken_references']}",
        "",
    ]
    if graph.duplicate_mandatory:
        md_lines.extend(["## Duplicate Mandatory Directives", ""])
        for entry in graph.duplicate_mandatory:
            check_deadline()
            md_lines.append(f"- `{entry['normalized']}`")
            for occurrence in entry["occurrences"]:
                md_lines.append(
                    f"  - {occurrence['source']}:{occurrence['line']}: {occurrence['text']}"
                )
        md_lines.append("")
    if graph.precedence_conflicts:
        md_lines.extend(["## Conflicting Precedence", ""])
        for entry in graph.precedence_conflicts:
            check_deadline()
            md_lines.append(f"- stem: `{entry['stem']}`")
            for occurrence in entry["positive"]:
                md_lines.append(
                    f"  - positive: {occurrence['source']}:{occurrence['line']}: {occurrence['text']}"
                )
            for occurrence in entry["negative"]:
                md_lines.append(
                    f"  - negative: {occurrence['source']}:{occurrence['line']}: {occurrence['text']}"
                )
        md_lines.append("")
    if graph.scoped_delta_violations:
        md_lines.extend(["## Scoped Delta Violations", ""])
        for entry in graph.scoped_delta_violations:
            check_deadline()
            md_lines.append(f"- {entry['source']}:{entry['line']}: {entry['text']}")
        md_lines.append("")
    if graph.stale_dependency_revisions:
        md_lines.extend(["## Stale Dependency Revisions", ""])
        for entry in graph.stale_dependency_revisions:
            check_deadline()
            md_lines.append(
                f"- {entry['source']}: `{entry['dependency']}` pinned `{entry['pinned']}` "
                f"but current revision is `{entry['actual']}`"
            )
        md_lines.append("")
    if graph.hidden_operational_toggles:
        md_lines.extend(["## Hidden Operational Toggles", ""])
        for entry in graph.hidden_operational_toggles:
            check_deadline()
            md_lines.append(f"- `{entry['token']}` appears in {entry['source']} but not in AGENTS docs")
        md_lines.append("")
    if graph.broken_references:
        md_lines.extend(["## Broken References", ""])
        for entry in graph.broken_references:
            check_deadline()
            md_lines.append(
                f"- {entry['source']}:{entry['line']}: `{entry['reference']}` ({entry['reason']})"
            )
        md_lines.append("")
    if not graph.warnings and not graph.violations:
        md_lines.extend(["No instruction drift detected.", ""])
    return "\n".join(md_lines)
